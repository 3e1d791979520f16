from typing import Dict, Optional

from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.config import PipelineSettings, settings
from app.core.exceptions import EditConflictError
from app.core.logging import review_id_var
from app.models.performance_review import CONTENT_FIELDS, PerformanceReview, ReviewStatus
from app.schemas.review import OriginalContentResponse
from app.services.audit import AuditService
from app.services.base import BaseService
from app.services.review_store import ReviewLockRegistry, ReviewStore, review_locks


class EditReconciliationService(BaseService):
    """
    Applies human edits on top of a draft while keeping the AI text.

    The first edit of a field stores its pre-edit value in ai_original_content;
    that entry is never overwritten by later edits. Re-applying the same patch
    is a no-op and does not bump the version.
    """

    def __init__(
        self,
        db: Session,
        store: Optional[ReviewStore] = None,
        locks: Optional[ReviewLockRegistry] = None,
        pipeline: Optional[PipelineSettings] = None,
    ):
        super().__init__(db)
        self.store = store or ReviewStore(db)
        self.locks = locks or review_locks
        self.pipeline = pipeline or settings.pipeline

    async def apply_human_edit(
        self,
        review_id: int,
        editor_id: int,
        field_patches: Dict[str, Optional[str]],
        expected_version: Optional[int] = None,
    ) -> PerformanceReview:
        unknown = set(field_patches) - set(CONTENT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown review fields: {sorted(unknown)}")

        token = review_id_var.set(str(review_id))
        try:
            async with self.locks.lock_for(review_id):
                return self._apply(review_id, editor_id, field_patches, expected_version)
        finally:
            review_id_var.reset(token)

    def _apply(self, review_id, editor_id, field_patches, expected_version) -> PerformanceReview:
        review = self.store.find(review_id)
        if review.status == ReviewStatus.APPROVED.value:
            raise EditConflictError(review_id, message="Approved reviews can no longer be edited.")

        version = review.version if expected_version is None else expected_version
        if version != review.version:
            raise EditConflictError(
                review_id,
                details={"expected_version": version, "current_version": review.version},
            )

        changes = {f: v for f, v in field_patches.items() if getattr(review, f) != v}
        if not changes:
            self.log_info(f"Edit on review {review_id} changes nothing; skipped")
            return review

        before = {f: getattr(review, f) for f in changes}
        values = dict(changes)
        now = utcnow()

        if review.is_ai_generated:
            original = dict(review.ai_original_content or {})
            for field in changes:
                original.setdefault(field, before[field])
            values["ai_original_content"] = original

            if not review.human_edited:
                values.update(human_edited=True, human_edited_at=now, human_edited_by=editor_id)
            else:
                values["human_edited_at"] = now
                if self.pipeline.allow_editor_overwrite:
                    values["human_edited_by"] = editor_id

            if review.status == ReviewStatus.AI_GENERATED.value:
                values["status"] = ReviewStatus.HUMAN_EDITED.value

        updated = self.store.compare_and_swap(review_id, version, values)
        AuditService(self.db, review.organization_id).log_action(
            action="review_human_edited",
            entity_type="performance_review",
            entity_id=review_id,
            user_id=editor_id,
            user_role=None,
            details={"fields": sorted(changes), "version": updated.version},
            before_state=before,
            after_state=changes,
        )
        self.commit()
        self.log_info(f"Review {review_id} edited by {editor_id}: {sorted(changes)}")
        return updated

    def get_original_content(self, review_id: int) -> OriginalContentResponse:
        review = self.store.find(review_id)
        current = review.content()
        saved = review.ai_original_content or {}
        if review.is_ai_generated:
            original = {f: saved[f] if f in saved else current[f] for f in CONTENT_FIELDS}
        else:
            original = {}
        return OriginalContentResponse(
            review_id=review.id,
            is_ai_generated=review.is_ai_generated,
            original=original,
            current=current,
            edited_fields=sorted(f for f in saved if saved[f] != current.get(f)),
            human_draft=review.human_draft_content or {},
        )
