"""
Sentiment and bias monitor over feedback text.

Each feedback item is classified once per analysis run and the latest result
is kept in feedback_analyses. Alerts are append-only and deduplicated per
employee and alert type while an unacknowledged alert of that type exists
inside the cooldown window.
"""
import re
from collections import Counter, OrderedDict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Union

from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.config import PipelineSettings, settings
from app.core.exceptions import AIError, AppException, NotFoundError, SentimentBatchError
from app.core.prompts import FEEDBACK_IMPROVEMENT_STRICT_RETRY, FEEDBACK_IMPROVEMENT_SYSTEM, SENTIMENT_USER_TEMPLATE, get_prompt
from app.models.ai_generation import AIGeneration
from app.models.employee import Employee
from app.models.feedback import Feedback, FeedbackAnalysis
from app.models.sentiment_alert import AlertSeverity, AlertType, SentimentAlert
from app.schemas.sentiment import (
    BatchAnalysisResult,
    BiasSummary,
    BiasTypeCount,
    FeedbackImprovement,
    ImprovementSuggestion,
    SentimentResult,
    SentimentTrend,
    TrendBucket,
)
from app.services.ai_orchestrator import call_with_timeout, retry_read_only
from app.services.audit import AuditService
from app.services.base import BaseService
from app.services.providers import ClassificationProvider, CompletionProvider, NotificationDispatcher
from app.services.response_parsing import complete_and_parse

PERIODS = ("week", "month", "quarter", "year")


def period_key(ts: datetime, period: str) -> str:
    if period == "week":
        year, week, _ = ts.isocalendar()
        return f"{year}-W{week:02d}"
    if period == "quarter":
        return f"{ts.year}-Q{(ts.month - 1) // 3 + 1}"
    if period == "year":
        return f"{ts.year}"
    return ts.strftime("%Y-%m")


def classify_trend(previous: float, latest: float, threshold: float) -> str:
    delta = latest - previous
    if delta > threshold:
        return "improving"
    if delta < -threshold:
        return "declining"
    return "stable"


def match_bias_keywords(text: str, keywords: List[str]) -> List[str]:
    lowered = (text or "").lower()
    return [kw for kw in keywords if re.search(r"\b" + re.escape(kw) + r"\b", lowered)]


def _merge_indicators(*groups: List[str]) -> List[str]:
    seen, merged = set(), []
    for group in groups:
        for item in group:
            key = item.strip().lower()
            if key and key not in seen:
                seen.add(key)
                merged.append(item.strip())
    return merged


class SentimentMonitor(BaseService):
    def __init__(
        self,
        db: Session,
        classifier: ClassificationProvider,
        notifier: Optional[NotificationDispatcher] = None,
        pipeline: Optional[PipelineSettings] = None,
        organization_id: Optional[int] = None,
        completion: Optional[CompletionProvider] = None,
    ):
        super().__init__(db, organization_id)
        self.classifier = classifier
        self.notifier = notifier
        self.completion = completion
        self.pipeline = pipeline or settings.pipeline

    # --- per-item analysis ---

    def _load_feedback(self, feedback: Union[Feedback, int]) -> Feedback:
        if isinstance(feedback, Feedback):
            return feedback
        item = self.db.get(Feedback, feedback)
        if item is None or (self.org_id is not None and item.organization_id != self.org_id):
            raise NotFoundError("Feedback", feedback)
        return item

    async def analyze(self, feedback: Union[Feedback, int]) -> SentimentResult:
        feedback = self._load_feedback(feedback)
        started = utcnow()
        classification = await retry_read_only(
            lambda: call_with_timeout(
                self.classifier.classify(feedback.content), self.pipeline.classification_timeout, "classifier"
            ),
            self.pipeline.retry_backoff_seconds,
        )
        bias = _merge_indicators(
            classification.bias_indicators,
            match_bias_keywords(feedback.content, self.pipeline.bias_keywords),
        )
        scores = classification.scores

        analysis = feedback.analysis or FeedbackAnalysis(feedback_id=feedback.id)
        analysis.employee_id = feedback.receiver_id
        analysis.tone = classification.tone
        analysis.quality_score = scores.get("quality", 50.0)
        analysis.specificity = scores.get("specificity", 50.0)
        analysis.actionability = scores.get("actionability", 50.0)
        analysis.bias_indicators = bias
        analysis.keywords = classification.keywords
        analysis.summary = classification.summary
        analysis.feedback_created_at = feedback.created_at
        analysis.analyzed_at = utcnow()
        if feedback.analysis is None:
            feedback.analysis = analysis
            self.db.add(analysis)
        self.db.flush()

        alerts = self._item_alerts(feedback, analysis)
        shift = self._shift_alert(feedback.organization_id, feedback.receiver_id, "month")
        if shift is not None:
            alerts.append(shift)

        self.db.add(AIGeneration(
            organization_id=feedback.organization_id,
            employee_id=feedback.receiver_id,
            generation_type="sentiment",
            outcome="success",
            confidence=analysis.quality_score / 100.0,
            duration_ms=(utcnow() - started).total_seconds() * 1000,
            details={"feedback_id": feedback.id, "tone": analysis.tone},
        ))
        self.commit()
        await self._notify_alerts(alerts)

        self.log_info(f"Analyzed feedback {feedback.id}: tone={analysis.tone}, alerts={len(alerts)}")
        return SentimentResult(
            feedback_id=feedback.id,
            employee_id=feedback.receiver_id,
            tone=analysis.tone,
            quality_score=analysis.quality_score,
            specificity=analysis.specificity,
            actionability=analysis.actionability,
            bias_indicators=bias,
            keywords=analysis.keywords or [],
            summary=analysis.summary,
            alerts_raised=[a.id for a in alerts],
        )

    async def suggest_improvements(self, feedback: Union[Feedback, int]) -> FeedbackImprovement:
        """Rewrite one feedback item to be more specific and actionable. Nothing is stored."""
        feedback = self._load_feedback(feedback)
        if self.completion is None:
            raise AIError("Feedback rewriting needs a completion provider")

        async def call(messages):
            return await call_with_timeout(
                self.completion.complete(messages, self.pipeline.generation_max_tokens),
                self.pipeline.generation_timeout,
                "completion",
            )

        messages = [
            {"role": "system", "content": FEEDBACK_IMPROVEMENT_SYSTEM},
            {"role": "user", "content": get_prompt(SENTIMENT_USER_TEMPLATE, text=feedback.content)},
        ]
        suggestion, _, _, _ = await complete_and_parse(
            call, messages, ImprovementSuggestion, FEEDBACK_IMPROVEMENT_STRICT_RETRY, "Feedback rewrite",
            failure_message="AI output could not be parsed; no rewrite is available.",
        )
        self.log_info(f"Suggested {len(suggestion.changes)} improvements for feedback {feedback.id}")
        return FeedbackImprovement(
            feedback_id=feedback.id,
            original=feedback.content,
            improved=suggestion.improved,
            changes=suggestion.changes,
        )

    def _item_alerts(self, feedback: Feedback, analysis: FeedbackAnalysis) -> List[SentimentAlert]:
        raised = []
        checks = (
            (
                bool(analysis.bias_indicators),
                AlertType.BIAS_DETECTED,
                AlertSeverity.HIGH,
                f"Possible bias in feedback: {', '.join(analysis.bias_indicators or [])}",
            ),
            (
                analysis.quality_score < self.pipeline.quality_floor,
                AlertType.QUALITY_DROP,
                AlertSeverity.LOW,
                f"Feedback quality {analysis.quality_score:.0f} is below {self.pipeline.quality_floor:g}",
            ),
            (
                analysis.tone == "negative",
                AlertType.CONCERNING_FEEDBACK,
                AlertSeverity.MEDIUM,
                "Negative feedback received",
            ),
        )
        for triggered, alert_type, severity, message in checks:
            if not triggered:
                continue
            alert = self._raise_alert(
                feedback.organization_id, feedback.receiver_id, alert_type, severity, message, [feedback.id]
            )
            if alert is not None:
                raised.append(alert)
        return raised

    # --- alerts ---

    def _raise_alert(
        self,
        organization_id: int,
        employee_id: int,
        alert_type: AlertType,
        severity: AlertSeverity,
        message: str,
        feedback_ids: List[int],
    ) -> Optional[SentimentAlert]:
        cutoff = utcnow() - timedelta(hours=self.pipeline.alert_cooldown_hours)
        existing = (
            self.db.query(SentimentAlert)
            .filter(
                SentimentAlert.employee_id == employee_id,
                SentimentAlert.type == alert_type.value,
                SentimentAlert.acknowledged.is_(False),
                SentimentAlert.created_at >= cutoff,
            )
            .first()
        )
        if existing is not None:
            self.log_info(f"Suppressed duplicate {alert_type.value} alert for employee {employee_id}")
            return None

        alert = SentimentAlert(
            organization_id=organization_id,
            employee_id=employee_id,
            type=alert_type.value,
            severity=severity.value,
            message=message,
            feedback_ids=feedback_ids,
            acknowledged=False,
            created_at=utcnow(),
        )
        self.db.add(alert)
        self.db.flush()
        self.log_warning(f"Sentiment alert {alert_type.value} raised for employee {employee_id}")
        return alert

    def _shift_alert(self, organization_id: int, employee_id: int, period: str) -> Optional[SentimentAlert]:
        buckets = self._buckets(employee_id, period)
        trends = [
            classify_trend(prev.average_quality, cur.average_quality, self.pipeline.trend_threshold)
            for prev, cur in zip(buckets, buckets[1:])
        ]
        if not trends or trends[-1] != "declining":
            return None
        previous = trends[-2] if len(trends) > 1 else "stable"
        if previous == "declining":
            return None
        latest = buckets[-1]
        return self._raise_alert(
            organization_id,
            employee_id,
            AlertType.SENTIMENT_SHIFT,
            AlertSeverity.MEDIUM,
            f"Feedback quality fell from {buckets[-2].average_quality:.0f} to {latest.average_quality:.0f} ({latest.period})",
            latest.feedback_ids,
        )

    async def _notify_alerts(self, alerts: List[SentimentAlert]):
        if self.notifier is None:
            return
        for alert in alerts:
            employee = self.db.get(Employee, alert.employee_id)
            manager = employee.manager if employee else None
            if manager is None or manager.user_id is None:
                continue
            await self.notifier.notify(manager.user_id, {
                "type": "sentiment_alert",
                "title": f"Sentiment alert: {alert.type.replace('_', ' ')}",
                "message": alert.message,
                "alert_id": alert.id,
                "employee_id": alert.employee_id,
                "severity": alert.severity,
            })

    def acknowledge(self, alert_id: int, actor_id: Optional[int] = None) -> SentimentAlert:
        alert = self.db.get(SentimentAlert, alert_id)
        if alert is None or (self.org_id is not None and alert.organization_id != self.org_id):
            raise NotFoundError("SentimentAlert", alert_id)
        if alert.acknowledged:
            return alert

        alert.acknowledged = True
        alert.acknowledged_at = utcnow()
        alert.acknowledged_by = actor_id
        AuditService(self.db, alert.organization_id).log_action(
            action="sentiment_alert_acknowledged",
            entity_type="sentiment_alert",
            entity_id=alert.id,
            user_id=actor_id,
            user_role=None,
            details={"type": alert.type, "employee_id": alert.employee_id},
            before_state={"acknowledged": False},
            after_state={"acknowledged": True},
        )
        self.commit()
        return alert

    def list_alerts(self, employee_id: Optional[int] = None, only_unacknowledged: bool = False) -> List[SentimentAlert]:
        q = self.db.query(SentimentAlert)
        if self.org_id is not None:
            q = q.filter(SentimentAlert.organization_id == self.org_id)
        if employee_id is not None:
            q = q.filter(SentimentAlert.employee_id == employee_id)
        if only_unacknowledged:
            q = q.filter(SentimentAlert.acknowledged.is_(False))
        return q.order_by(SentimentAlert.created_at.desc(), SentimentAlert.id.desc()).all()

    # --- trends ---

    def _buckets(self, employee_id: int, period: str) -> List[TrendBucket]:
        rows = (
            self.db.query(FeedbackAnalysis)
            .filter(FeedbackAnalysis.employee_id == employee_id)
            .order_by(FeedbackAnalysis.feedback_created_at.asc(), FeedbackAnalysis.id.asc())
            .all()
        )
        grouped: "OrderedDict[str, List[FeedbackAnalysis]]" = OrderedDict()
        for row in rows:
            grouped.setdefault(period_key(row.feedback_created_at, period), []).append(row)

        buckets: List[TrendBucket] = []
        window = max(1, self.pipeline.moving_average_window)
        for key, items in grouped.items():
            average = sum(i.quality_score for i in items) / len(items)
            recent = [b.average_quality for b in buckets[-(window - 1):]] if window > 1 else []
            moving = (sum(recent) + average) / (len(recent) + 1)
            buckets.append(TrendBucket(
                period=key,
                count=len(items),
                average_quality=round(average, 2),
                moving_average=round(moving, 2),
                tone_counts=dict(Counter(i.tone for i in items)),
                feedback_ids=[i.feedback_id for i in items],
            ))
        return buckets

    def summarize(self, employee_id: int, period: str = "month") -> SentimentTrend:
        if period not in PERIODS:
            raise AppException(f"Unsupported period '{period}'", status_code=400, error_code="INVALID_PERIOD")
        employee = self.db.get(Employee, employee_id)
        if employee is None or (self.org_id is not None and employee.organization_id != self.org_id):
            raise NotFoundError("Employee", employee_id)

        buckets = self._buckets(employee_id, period)
        trend = "stable"
        if len(buckets) >= 2:
            trend = classify_trend(
                buckets[-2].average_quality, buckets[-1].average_quality, self.pipeline.trend_threshold
            )

        alerts_raised = []
        shift = self._shift_alert(employee.organization_id, employee_id, period)
        if shift is not None:
            alerts_raised.append(shift.id)
            self.commit()

        total = sum(b.count for b in buckets)
        average = sum(b.average_quality * b.count for b in buckets) / total if total else 0.0
        return SentimentTrend(
            employee_id=employee_id,
            period=period,
            trend=trend,
            average_quality=round(average, 2),
            buckets=buckets,
            alerts_raised=alerts_raised,
        )

    # --- batch / reporting ---

    async def analyze_batch(self, employee_id: Optional[int] = None, only_unanalyzed: bool = True) -> BatchAnalysisResult:
        q = self.db.query(Feedback)
        if self.org_id is not None:
            q = q.filter(Feedback.organization_id == self.org_id)
        if employee_id is not None:
            q = q.filter(Feedback.receiver_id == employee_id)
        if only_unanalyzed:
            q = q.filter(~Feedback.analysis.has())
        items = q.order_by(Feedback.created_at.asc()).all()

        results, failed_ids = [], []
        for item in items:
            item_id = item.id
            try:
                results.append(await self.analyze(item))
            except Exception as e:
                # Per-item failure: skipped here, the failure rate decides below
                self.db.rollback()
                failed_ids.append(item_id)
                self.log_error(f"Sentiment analysis failed for feedback {item_id}: {e}", exc_info=True)

        total = len(items)
        if total and len(failed_ids) / total > self.pipeline.batch_failure_threshold:
            raise SentimentBatchError(len(failed_ids), total, self.pipeline.batch_failure_threshold)

        self.log_info(f"Sentiment batch analyzed {len(results)}/{total} feedback items")
        return BatchAnalysisResult(
            total=total,
            analyzed=len(results),
            failed=len(failed_ids),
            failed_feedback_ids=failed_ids,
            results=results,
        )

    def bias_summary(self, organization_id: Optional[int] = None) -> BiasSummary:
        org_id = organization_id or self.org_id
        q = self.db.query(FeedbackAnalysis).join(Feedback, Feedback.id == FeedbackAnalysis.feedback_id)
        if org_id is not None:
            q = q.filter(Feedback.organization_id == org_id)
        analyses = q.all()

        counter: Counter = Counter()
        flagged = 0
        for a in analyses:
            indicators = a.bias_indicators or []
            if indicators:
                flagged += 1
                counter.update(i.lower() for i in indicators)

        total = len(analyses)
        return BiasSummary(
            total_feedback=total,
            bias_detected=flagged,
            bias_percentage=round(100.0 * flagged / total, 2) if total else 0.0,
            common_bias_types=[BiasTypeCount(type=t, count=c) for t, c in counter.most_common(5)],
        )
