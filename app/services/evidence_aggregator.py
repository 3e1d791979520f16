from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, joinedload

from app.core.clock import as_naive_utc, utcnow
from app.core.config import PipelineSettings, settings
from app.core.exceptions import InsufficientScopeError, NotFoundError
from app.models.employee import Employee
from app.models.feedback import Feedback
from app.models.objective import Objective, ObjectiveMember
from app.models.performance_review import PerformanceReview, ReviewStatus
from app.models.review_cycle import ReviewCycle
from app.schemas.evidence import (
    EvidenceBundle,
    EvidenceWindow,
    FeedbackSummary,
    OkrSummary,
    ReviewSummary,
)
from app.schemas.review import SourceExcerpt
from app.services.base import BaseService
from app.services.providers import AccessPolicy

# Only finished reviews count as history
_HISTORY_STATUSES = (ReviewStatus.SUBMITTED.value, ReviewStatus.APPROVED.value)


def _okr_text(o: Objective) -> str:
    text = f"{o.title}: {o.description}" if o.description else o.title
    return f"{text} ({o.progress or 0:.0f}% complete, {o.status})"


def _review_text(r: PerformanceReview) -> str:
    return " | ".join(f"{field.replace('_', ' ')}: {value}" for field, value in r.content().items() if value)


class EvidenceAggregator(BaseService):
    """Collects an employee's OKRs, received feedback and prior reviews for a window. Read-only."""

    def __init__(self, db: Session, access_policy: AccessPolicy, pipeline: Optional[PipelineSettings] = None):
        super().__init__(db)
        self.access_policy = access_policy
        self.pipeline = pipeline or settings.pipeline

    def default_window(self, organization_id: int, now: Optional[datetime] = None) -> EvidenceWindow:
        """Since the end of the organization's last completed review cycle, else the trailing year."""
        end = now or utcnow()
        last_cycle = (
            self.db.query(ReviewCycle)
            .filter(
                ReviewCycle.organization_id == organization_id,
                ReviewCycle.status == "completed",
                ReviewCycle.end_date < end,
            )
            .order_by(ReviewCycle.end_date.desc())
            .first()
        )
        if last_cycle is not None:
            return EvidenceWindow(start=as_naive_utc(last_cycle.end_date), end=end)
        return EvidenceWindow(start=end - timedelta(days=self.pipeline.default_window_days), end=end)

    def aggregate(
        self,
        actor_id: Optional[int],
        employee_id: int,
        window: Optional[EvidenceWindow] = None,
        exclude_review_id: Optional[int] = None,
    ) -> EvidenceBundle:
        employee = self.db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundError("Employee", employee_id)
        if not self.access_policy.can_read(actor_id, employee_id):
            self.log_warning(f"Actor {actor_id} denied evidence access to employee {employee_id}")
            raise InsufficientScopeError(actor_id, employee_id)

        if window is None:
            window = self.default_window(employee.organization_id)
        start, end = as_naive_utc(window.start), as_naive_utc(window.end)

        bundle = EvidenceBundle(
            employee_id=employee.id,
            organization_id=employee.organization_id,
            employee_name=employee.name,
            job_title=employee.job_title,
            department=employee.department,
            window_start=start,
            window_end=end,
            okrs=self._okrs(employee, start, end),
            feedback_items=self._feedback(employee, start, end),
            prior_reviews=self._reviews(employee, start, end, exclude_review_id),
        )
        self.log_info(
            f"Aggregated evidence for employee {employee_id}: "
            f"{len(bundle.okrs)} OKRs, {len(bundle.feedback_items)} feedback, {len(bundle.prior_reviews)} reviews"
        )
        return bundle

    def _okrs(self, employee: Employee, start: datetime, end: datetime):
        member_of = select(ObjectiveMember.objective_id).where(
            ObjectiveMember.employee_id == employee.id, ObjectiveMember.is_active.is_(True)
        )
        touched = func.coalesce(Objective.updated_at, Objective.created_at)
        objectives = (
            self.db.query(Objective)
            .filter(
                Objective.organization_id == employee.organization_id,
                or_(Objective.owner_id == employee.id, Objective.id.in_(member_of)),
                touched >= start,
                touched <= end,
            )
            .order_by(touched.desc())
            .all()
        )
        return [
            OkrSummary(
                id=o.id,
                text=_okr_text(o),
                timestamp=o.updated_at or o.created_at,
                progress=o.progress,
                status=o.status,
            )
            for o in objectives
        ]

    def _feedback(self, employee: Employee, start: datetime, end: datetime):
        items = (
            self.db.query(Feedback)
            .options(joinedload(Feedback.giver), joinedload(Feedback.analysis))
            .filter(
                Feedback.receiver_id == employee.id,
                Feedback.created_at >= start,
                Feedback.created_at <= end,
            )
            .order_by(Feedback.created_at.desc())
            .all()
        )
        return [
            FeedbackSummary(
                id=f.id,
                text=f.content,
                timestamp=f.created_at,
                sentiment=f.analysis.quality_score if f.analysis else None,
                tags=f.tags or [],
                giver_name=f.giver.name if f.giver else None,
            )
            for f in items
        ]

    def _reviews(self, employee: Employee, start: datetime, end: datetime, exclude_review_id: Optional[int]):
        q = self.db.query(PerformanceReview).filter(
            PerformanceReview.employee_id == employee.id,
            PerformanceReview.status.in_(_HISTORY_STATUSES),
            PerformanceReview.created_at >= start,
            PerformanceReview.created_at <= end,
        )
        if exclude_review_id is not None:
            q = q.filter(PerformanceReview.id != exclude_review_id)

        summaries = []
        for r in q.order_by(PerformanceReview.created_at.desc()).all():
            text = _review_text(r)
            if not text:
                continue
            summaries.append(ReviewSummary(
                id=r.id,
                text=text,
                timestamp=r.submitted_at or r.created_at,
                overall_rating=r.overall_rating,
                review_type=r.review_type,
            ))
        return summaries

    def excerpts(self, employee_id: int, source_ids: List[str]) -> List[SourceExcerpt]:
        """
        Current text of cited sources, e.g. ["okr:3", "feedback:7"].

        Keys that no longer resolve to a record of this employee are dropped.
        """
        employee = self.db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundError("Employee", employee_id)

        wanted: Dict[str, List[int]] = {"okr": [], "feedback": [], "review": []}
        for key in dict.fromkeys(source_ids):
            kind, _, raw_id = key.partition(":")
            if kind in wanted and raw_id.isdigit():
                wanted[kind].append(int(raw_id))

        texts: Dict[str, str] = {}
        if wanted["okr"]:
            for o in self.db.query(Objective).filter(
                Objective.id.in_(wanted["okr"]), Objective.organization_id == employee.organization_id
            ):
                texts[f"okr:{o.id}"] = _okr_text(o)
        if wanted["feedback"]:
            for f in self.db.query(Feedback).filter(
                Feedback.id.in_(wanted["feedback"]), Feedback.receiver_id == employee.id
            ):
                texts[f"feedback:{f.id}"] = f.content
        if wanted["review"]:
            for r in self.db.query(PerformanceReview).filter(
                PerformanceReview.id.in_(wanted["review"]), PerformanceReview.employee_id == employee.id
            ):
                texts[f"review:{r.id}"] = _review_text(r)

        return [SourceExcerpt(source_id=key, text=texts[key]) for key in dict.fromkeys(source_ids) if texts.get(key)]
