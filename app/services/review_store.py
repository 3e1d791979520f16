import asyncio
import weakref
from typing import Any, Dict

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.exceptions import EditConflictError, NotFoundError
from app.models.performance_review import PerformanceReview
from app.services.base import BaseService


class ReviewLockRegistry:
    """
    One asyncio.Lock per review id, held only around a write section.
    Locks are dropped once nobody references them.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, review_id: int) -> asyncio.Lock:
        lock = self._locks.get(review_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[review_id] = lock
        return lock


review_locks = ReviewLockRegistry()


class ReviewStore(BaseService):
    """Persistence for review drafts. Every update is a compare-and-swap on `version`."""

    def __init__(self, db: Session):
        super().__init__(db)

    def find(self, review_id: int) -> PerformanceReview:
        review = self.db.get(PerformanceReview, review_id)
        if review is None:
            raise NotFoundError("PerformanceReview", review_id)
        return review

    def create(self, **values: Any) -> PerformanceReview:
        review = PerformanceReview(version=1, **values)
        self.db.add(review)
        self.db.flush()
        return review

    def compare_and_swap(self, review_id: int, expected_version: int, values: Dict[str, Any]) -> PerformanceReview:
        """
        UPDATE ... WHERE id = :id AND version = :expected, bumping the version.
        Raises EditConflictError when another writer got there first.
        Flushes only; the caller commits.
        """
        stmt = (
            update(PerformanceReview)
            .where(PerformanceReview.id == review_id, PerformanceReview.version == expected_version)
            .values(**values, version=expected_version + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        if result.rowcount == 0:
            current = self.db.get(PerformanceReview, review_id, populate_existing=True)
            if current is None:
                raise NotFoundError("PerformanceReview", review_id)
            self.log_warning(
                f"Version conflict on review {review_id}: expected {expected_version}, found {current.version}"
            )
            raise EditConflictError(
                review_id,
                details={"expected_version": expected_version, "current_version": current.version},
            )
        return self.db.get(PerformanceReview, review_id, populate_existing=True)
