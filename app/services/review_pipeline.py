import asyncio
import time
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.clock import as_naive_utc, utcnow
from app.core.config import PipelineSettings, settings
from app.core.exceptions import (
    AppException,
    EditConflictError,
    GenerationParseError,
    GenerationTimeoutError,
)
from app.core.logging import request_id_var, review_id_var
from app.models.ai_generation import AIGeneration
from app.models.employee import Employee
from app.models.performance_review import ReviewStatus
from app.schemas.evidence import EvidenceWindow
from app.schemas.retrieval import RetrievedContext
from app.schemas.review import GenerateReviewRequest, GenerationMeta, GenerationOutcome, GenerationSkipped, ReviewResponse
from app.schemas.trust import TrustMetadata
from app.services.base import BaseService
from app.services.context_retriever import ContextRetriever, build_query
from app.services.evidence_aggregator import EvidenceAggregator
from app.services.provenance import ProvenanceRecorder
from app.services.providers import (
    AccessPolicy,
    CompletionProvider,
    EmbeddingProvider,
    NotificationDispatcher,
    VectorIndex,
)
from app.services.quality_assessor import QualityAssessor
from app.services.review_generator import ReviewGenerator
from app.services.review_store import ReviewLockRegistry, ReviewStore, review_locks

# Regeneration would discard human work in any other state
_REGENERABLE = (ReviewStatus.DRAFT.value, ReviewStatus.AI_GENERATED.value)


class ReviewGenerationService(BaseService):
    """
    End-to-end draft generation:
    aggregate -> score -> retrieve -> generate -> finalize -> record.

    The whole run is bounded by the generation deadline; on timeout nothing is
    persisted. When regenerating an existing review the version is captured
    before the first await, so a concurrent human edit makes the final write
    fail with EditConflictError instead of overwriting it.
    """

    def __init__(
        self,
        db: Session,
        access_policy: AccessPolicy,
        embedder: EmbeddingProvider,
        vector_index: VectorIndex,
        completion: CompletionProvider,
        notifier: Optional[NotificationDispatcher] = None,
        pipeline: Optional[PipelineSettings] = None,
        locks: Optional[ReviewLockRegistry] = None,
    ):
        super().__init__(db)
        self.pipeline = pipeline or settings.pipeline
        self.notifier = notifier
        self.locks = locks or review_locks
        self.store = ReviewStore(db)
        self.aggregator = EvidenceAggregator(db, access_policy, self.pipeline)
        self.assessor = QualityAssessor(self.pipeline)
        self.retriever = ContextRetriever(embedder, vector_index, self.pipeline)
        self.generator = ReviewGenerator(completion, self.pipeline)
        self.recorder = ProvenanceRecorder(db, self.store, self.pipeline)

    def _window(self, request: GenerateReviewRequest) -> Optional[EvidenceWindow]:
        start, end = as_naive_utc(request.window_start), as_naive_utc(request.window_end)
        if start is None and end is None:
            return None
        end = end or utcnow()
        start = start or end - timedelta(days=self.pipeline.default_window_days)
        if start >= end:
            raise AppException("window_start must be before window_end", status_code=400, error_code="INVALID_WINDOW")
        return EvidenceWindow(start=start, end=end)

    async def generate_review(self, actor_id: Optional[int], request: GenerateReviewRequest) -> GenerationOutcome:
        started = time.monotonic()
        token = review_id_var.set(str(request.review_id or ""))
        try:
            outcome = await asyncio.wait_for(
                self._run(actor_id, request, started), timeout=self.pipeline.generation_deadline
            )
        except asyncio.TimeoutError:
            self.db.rollback()
            self.log_error(f"Generation for employee {request.employee_id} exceeded the deadline")
            self._log_attempt(request, "timeout", started, details={"deadline": self.pipeline.generation_deadline})
            raise GenerationTimeoutError(self.pipeline.generation_deadline)
        finally:
            review_id_var.reset(token)

        if outcome.review is not None:
            await self._notify_ready(actor_id, outcome)
        return outcome

    async def _run(self, actor_id: Optional[int], request: GenerateReviewRequest, started: float) -> GenerationOutcome:
        review_type = request.review_type.value
        expected_version = None
        if request.review_id is not None:
            review = self.store.find(request.review_id)
            if review.employee_id != request.employee_id:
                raise AppException(
                    f"Review {review.id} does not belong to employee {request.employee_id}",
                    status_code=400,
                    error_code="REVIEW_EMPLOYEE_MISMATCH",
                )
            if review.status not in _REGENERABLE:
                raise EditConflictError(
                    review.id,
                    message=f"Review is '{review.status}'; regenerating would discard human changes.",
                )
            expected_version = review.version
            review_type = review.review_type or review_type

        bundle = self.aggregator.aggregate(actor_id, request.employee_id, self._window(request), request.review_id)
        quality = self.assessor.score(bundle)

        if bundle.is_empty:
            skipped = await self.generator.generate(bundle, quality, RetrievedContext(), review_type)
            self._log_attempt(request, "skipped", started, organization_id=bundle.organization_id)
            return GenerationOutcome(status="skipped", quality=quality, skipped=skipped)

        employee = self.db.get(Employee, request.employee_id)
        focus_areas = request.focus_areas or (employee.focus_areas if employee else None) or None
        query = build_query(bundle, review_type, focus_areas)
        retrieval = await self.retriever.retrieve(query, bundle.employee_id, bundle.organization_id)

        try:
            content = await self.generator.generate(
                bundle, quality, retrieval.context, review_type, focus_areas,
                retrieval_degraded=retrieval.degraded,
            )
        except GenerationParseError as e:
            details = e.details or {}
            self._log_attempt(
                request, "parse_failed", started,
                organization_id=bundle.organization_id,
                prompt=details.get("prompt"),
                raw_output=details.get("raw_output"),
                retried=True,
                retrieval_degraded=retrieval.degraded,
            )
            raise
        except GenerationTimeoutError:
            self._log_attempt(request, "timeout", started, organization_id=bundle.organization_id)
            raise

        if isinstance(content, GenerationSkipped):
            return GenerationOutcome(status="skipped", quality=quality, skipped=content)

        meta: GenerationMeta = content.meta
        provenance = self.recorder.finalize(quality, retrieval.context, meta, bundle, content)

        try:
            if request.review_id is not None:
                async with self.locks.lock_for(request.review_id):
                    saved = self._record(actor_id, request, bundle, content, provenance, quality, meta, expected_version, review_type)
            else:
                saved = self._record(actor_id, request, bundle, content, provenance, quality, meta, None, review_type)
        except EditConflictError as e:
            self.db.rollback()
            self._log_attempt(
                request, "conflict", started,
                organization_id=bundle.organization_id,
                meta=meta,
                confidence=provenance.confidence_score,
                details=e.details,
            )
            raise

        self._log_attempt(
            request, "success", started,
            organization_id=bundle.organization_id,
            review_id=saved.id,
            meta=meta,
            confidence=provenance.confidence_score,
        )

        trust = TrustMetadata.from_score(
            provenance.confidence_score,
            model=meta.model,
            sources=provenance.sources,
            quality_score=quality.overall_score,
            retrieval_degraded=meta.retrieval_degraded,
            schema_retry=meta.retried,
            request_id=request_id_var.get() or None,
        )
        return GenerationOutcome(
            status="generated",
            review=ReviewResponse.model_validate(saved),
            quality=quality,
            trust=trust,
        )

    def _record(self, actor_id, request, bundle, content, provenance, quality, meta, expected_version, review_type):
        return self.recorder.record(
            bundle,
            content,
            provenance,
            quality,
            meta,
            actor_id=actor_id,
            review_id=request.review_id,
            expected_version=expected_version,
            review_type=review_type,
            review_cycle_id=request.review_cycle_id,
        )

    def _log_attempt(
        self,
        request: GenerateReviewRequest,
        outcome: str,
        started: float,
        organization_id: Optional[int] = None,
        review_id: Optional[int] = None,
        meta: Optional[GenerationMeta] = None,
        confidence: Optional[float] = None,
        prompt: Optional[str] = None,
        raw_output: Optional[str] = None,
        retried: bool = False,
        retrieval_degraded: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Append one ai_generations row. Logging failures never mask the pipeline result."""
        try:
            if organization_id is None:
                employee = self.db.get(Employee, request.employee_id)
                organization_id = employee.organization_id if employee else None
            self.db.add(AIGeneration(
                organization_id=organization_id,
                employee_id=request.employee_id,
                review_id=review_id or request.review_id,
                generation_type="review",
                outcome=outcome,
                prompt=meta.prompt if meta else prompt,
                raw_output=meta.raw_output if meta else raw_output,
                confidence=confidence,
                retried=meta.retried if meta else retried,
                retrieval_degraded=meta.retrieval_degraded if meta else retrieval_degraded,
                model_version=meta.model if meta else None,
                duration_ms=round((time.monotonic() - started) * 1000, 1),
                details=details or {},
            ))
            self.commit()
        except Exception as e:
            self.log_error(f"Failed to log generation attempt: {e}", exc_info=True)

    async def _notify_ready(self, actor_id: Optional[int], outcome: GenerationOutcome):
        if self.notifier is None:
            return
        employee = self.db.get(Employee, outcome.review.employee_id)
        manager = employee.manager if employee else None
        if manager is None or manager.user_id is None or manager.user_id == actor_id:
            return
        await self.notifier.notify(manager.user_id, {
            "type": "review_status",
            "title": "AI review draft ready",
            "message": f"An AI-generated draft review for {employee.name} is ready for your review.",
            "review_id": outcome.review.id,
            "status": outcome.review.status,
            "link": f"/reviews/{outcome.review.id}",
        })
