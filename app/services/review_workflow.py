from typing import Dict, Optional, Set

from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.exceptions import InvalidTransitionError
from app.models.employee import Employee
from app.models.performance_review import PerformanceReview, ReviewStatus
from app.services.audit import AuditService
from app.services.base import BaseService
from app.services.providers import NotificationDispatcher
from app.services.review_store import ReviewLockRegistry, ReviewStore, review_locks

S = ReviewStatus

# draft -> ai_generated -> human_edited -> submitted -> approved, with shortcuts to submitted
TRANSITIONS: Dict[str, Set[str]] = {
    S.DRAFT.value: {S.AI_GENERATED.value, S.SUBMITTED.value},
    S.AI_GENERATED.value: {S.HUMAN_EDITED.value, S.SUBMITTED.value},
    S.HUMAN_EDITED.value: {S.SUBMITTED.value},
    S.SUBMITTED.value: {S.APPROVED.value},
    S.APPROVED.value: set(),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


class ReviewWorkflowService(BaseService):
    """Submit / approve transitions. Notification is best effort and happens after commit."""

    def __init__(
        self,
        db: Session,
        notifier: Optional[NotificationDispatcher] = None,
        store: Optional[ReviewStore] = None,
        locks: Optional[ReviewLockRegistry] = None,
    ):
        super().__init__(db)
        self.notifier = notifier
        self.store = store or ReviewStore(db)
        self.locks = locks or review_locks

    async def submit(self, review_id: int, actor_id: int, expected_version: Optional[int] = None) -> PerformanceReview:
        review = await self._transition(
            review_id, actor_id, S.SUBMITTED.value, {"submitted_at": utcnow()}, expected_version
        )
        employee = self.db.get(Employee, review.employee_id)
        manager_user_id = employee.manager.user_id if employee and employee.manager else None
        if manager_user_id:
            await self._notify(manager_user_id, review, f"Review for {employee.name} submitted for approval")
        return review

    async def approve(self, review_id: int, actor_id: int, expected_version: Optional[int] = None) -> PerformanceReview:
        review = await self._transition(
            review_id, actor_id, S.APPROVED.value, {"approved_at": utcnow(), "approved_by": actor_id}, expected_version
        )
        employee = self.db.get(Employee, review.employee_id)
        if employee and employee.user_id:
            await self._notify(employee.user_id, review, "Your performance review has been approved")
        return review

    async def _transition(self, review_id, actor_id, target, extra, expected_version) -> PerformanceReview:
        async with self.locks.lock_for(review_id):
            review = self.store.find(review_id)
            current = review.status
            if not can_transition(current, target):
                raise InvalidTransitionError(current, target)
            version = review.version if expected_version is None else expected_version
            updated = self.store.compare_and_swap(review_id, version, {"status": target, **extra})
            AuditService(self.db, review.organization_id).log_action(
                action=f"review_{target}",
                entity_type="performance_review",
                entity_id=review_id,
                user_id=actor_id,
                user_role=None,
                details={"version": updated.version},
                before_state={"status": current},
                after_state={"status": target},
            )
            self.commit()
        self.log_info(f"Review {review_id} moved {current} -> {target} by {actor_id}")
        return updated

    async def _notify(self, user_id: int, review: PerformanceReview, message: str):
        if self.notifier is None:
            return
        await self.notifier.notify(user_id, {
            "type": "review_status",
            "title": "Performance review update",
            "message": message,
            "review_id": review.id,
            "status": review.status,
            "link": f"/reviews/{review.id}",
        })
