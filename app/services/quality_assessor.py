"""
Evidence quality scoring.

Each category is scored on coverage (how many items relative to what a
window of this length should hold) and recency (how much of the evidence
falls in the second half of the window). The overall score is a weighted
blend of the categories. Scoring never blocks generation; it only informs
the confidence value and the warnings shown to the reviewer.
"""
import math
from datetime import datetime
from typing import Iterable, List, Optional

from app.core.config import PipelineSettings, settings
from app.schemas.evidence import CategoryScore, EvidenceBundle, EvidenceWindow, QualityScore

DAYS_PER_QUARTER = 91.25


def item_recency(timestamp: datetime, window: EvidenceWindow) -> float:
    """100 for items in the later half of the window, falling linearly to 0 at its start."""
    midpoint = window.start + (window.end - window.start) / 2
    if timestamp >= midpoint:
        return 100.0
    span = (midpoint - window.start).total_seconds()
    if span <= 0:
        return 100.0
    elapsed = (timestamp - window.start).total_seconds()
    return max(0.0, min(100.0, 100.0 * elapsed / span))


class QualityAssessor:
    def __init__(self, pipeline: Optional[PipelineSettings] = None):
        self.pipeline = pipeline or settings.pipeline

    def expected_counts(self, window: EvidenceWindow) -> dict:
        quarters = max(1.0, window.days / DAYS_PER_QUARTER)
        return {
            "okr": self.pipeline.expected_okrs_per_quarter * quarters,
            "feedback": self.pipeline.expected_feedback_per_quarter * quarters,
            "review_history": self.pipeline.expected_reviews,
        }

    def _category(self, timestamps: Iterable[datetime], expected: float, window: EvidenceWindow) -> CategoryScore:
        stamps: List[datetime] = list(timestamps)
        count = len(stamps)
        if expected <= 0:
            coverage = 100.0
            slots = max(count, 1)
        else:
            coverage = min(100.0, 100.0 * count / expected)
            slots = math.ceil(expected)

        # Only the best `slots` items count, so extra items never lower the score
        best = sorted((item_recency(ts, window) for ts in stamps), reverse=True)[:slots]
        recency = min(100.0, sum(best) / slots) if best else 0.0

        score = self.pipeline.coverage_weight * coverage + self.pipeline.recency_weight * recency
        return CategoryScore(
            count=count,
            expected=round(expected, 2),
            coverage=round(coverage, 2),
            recency=round(recency, 2),
            score=round(min(100.0, max(0.0, score)), 2),
        )

    def score(self, bundle: EvidenceBundle) -> QualityScore:
        window = bundle.window
        expected = self.expected_counts(window)

        okr = self._category((o.timestamp for o in bundle.okrs), expected["okr"], window)
        feedback = self._category((f.timestamp for f in bundle.feedback_items), expected["feedback"], window)
        history = self._category((r.timestamp for r in bundle.prior_reviews), expected["review_history"], window)

        weights = self.pipeline.category_weights
        overall = (
            weights.get("feedback", 0.0) * feedback.score
            + weights.get("okr", 0.0) * okr.score
            + weights.get("review_history", 0.0) * history.score
        )

        warnings = []
        for label, category in (("OKRs", okr), ("feedback items", feedback), ("prior reviews", history)):
            if category.count == 0:
                warnings.append(f"No {label} in the review window")
            elif category.coverage < 50:
                warnings.append(
                    f"Only {category.count} {label} found (about {category.expected:g} expected)"
                )
        if bundle.feedback_items and feedback.recency < 25:
            warnings.append("Most feedback is from early in the review window")

        return QualityScore(
            okr=okr,
            feedback=feedback,
            review_history=history,
            overall_score=round(min(100.0, max(0.0, overall)), 2),
            warnings=warnings,
        )
