from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.models.ai_generation import AIGeneration
from app.models.performance_review import PerformanceReview
from app.schemas.ai_metrics import (
    AIHealthStatus,
    AIMetrics,
    DailyGenerations,
    GenerationStats,
    QualityMetrics,
)
from app.services.base import BaseService


def _pct(part: int, whole: int) -> float:
    return round(100.0 * part / whole, 2) if whole else 0.0


def _mean(values) -> float:
    values = [v for v in values if v is not None]
    return round(sum(values) / len(values), 4) if values else 0.0


class AIMetricsService(BaseService):
    """Generation statistics from the ai_generations log."""

    def __init__(self, db: Session, organization_id: Optional[int] = None):
        super().__init__(db, organization_id)

    def metrics(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> AIMetrics:
        end = end or utcnow()
        start = start or end - timedelta(days=30)

        q = self.db.query(AIGeneration).filter(AIGeneration.created_at >= start, AIGeneration.created_at <= end)
        if self.org_id is not None:
            q = q.filter(AIGeneration.organization_id == self.org_id)
        rows = q.all()
        reviews = [r for r in rows if r.generation_type == "review"]
        succeeded = [r for r in reviews if r.outcome == "success"]

        rq = self.db.query(PerformanceReview).filter(
            PerformanceReview.is_ai_generated.is_(True),
            PerformanceReview.ai_generated_at >= start,
            PerformanceReview.ai_generated_at <= end,
        )
        if self.org_id is not None:
            rq = rq.filter(PerformanceReview.organization_id == self.org_id)
        ai_reviews = rq.all()
        edited = sum(1 for r in ai_reviews if r.human_edited)

        by_day = defaultdict(list)
        for r in reviews:
            by_day[r.created_at.date().isoformat()].append(r)

        return AIMetrics(
            period_start=start,
            period_end=end,
            generation_stats=GenerationStats(
                total_generations=len(reviews),
                success_rate=_pct(len(succeeded), len(reviews)),
                average_confidence=_mean(r.confidence for r in succeeded),
                average_duration_ms=round(_mean(r.duration_ms for r in reviews), 1),
                retry_rate=_pct(sum(1 for r in reviews if r.retried), len(reviews)),
                degraded_rate=_pct(sum(1 for r in reviews if r.retrieval_degraded), len(reviews)),
            ),
            quality_metrics=QualityMetrics(
                ai_reviews=len(ai_reviews),
                edited_reviews=edited,
                edit_rate=_pct(edited, len(ai_reviews)),
                acceptance_rate=_pct(len(ai_reviews) - edited, len(ai_reviews)),
            ),
            outcomes=dict(Counter(r.outcome for r in reviews)),
            usage_by_type=dict(Counter(r.generation_type for r in rows)),
            time_series=[
                DailyGenerations(
                    date=day,
                    generations=len(items),
                    success_rate=_pct(sum(1 for i in items if i.outcome == "success"), len(items)),
                    average_confidence=_mean(i.confidence for i in items if i.outcome == "success"),
                )
                for day, items in sorted(by_day.items())
            ],
        )

    def health(self) -> AIHealthStatus:
        m = self.metrics()
        stats = m.generation_stats
        status, issues, recommendations = "healthy", [], []

        if stats.total_generations:
            if stats.success_rate < 80:
                status = "critical"
                issues.append("Low AI generation success rate")
                recommendations.append("Review model configuration and prompts")
            elif stats.success_rate < 90:
                status = "warning"
                issues.append("Below optimal AI generation success rate")
                recommendations.append("Monitor parse failures and timeouts")

            if stats.average_confidence < 0.6:
                status = "critical"
                issues.append("Low average confidence in AI drafts")
                recommendations.append("Check evidence coverage and retrieval health")
            elif stats.average_confidence < 0.8 and status != "critical":
                status = "warning"
                issues.append("Below optimal average confidence")

            if stats.degraded_rate > 20 and status != "critical":
                status = "warning"
                issues.append("Context retrieval frequently degraded")
                recommendations.append("Check the embedding provider and vector index")

        return AIHealthStatus(status=status, issues=issues, recommendations=recommendations, last_updated=utcnow())
