"""
Confidence scoring and source attribution for generated drafts.

confidence = clamp(0, 1, 0.5 * quality/100 + 0.3 * mean_similarity
                         + 0.2 * certainty - penalty)

The penalty applies when retrieval was degraded or the output needed the
strict-schema retry. Sources are recorded as a single list of tagged variants
(evidence vs retrieved); each weight is the fraction of generated fields that
cite the source with an inline marker such as [feedback:12]. Uncited
evidence is listed only when nothing at all is cited (uniform weights).
"""
import re
from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.config import PipelineSettings, settings
from app.models.performance_review import PerformanceReview, ReviewStatus
from app.schemas.evidence import EvidenceBundle, QualityScore
from app.schemas.retrieval import RetrievedContext
from app.schemas.review import GeneratedContent, GenerationMeta
from app.schemas.trust import AISource, EvidenceSource, RetrievedSource, dump_sources
from app.services.audit import AuditService
from app.services.base import BaseService
from app.services.review_store import ReviewStore

_CITATION = re.compile(r"\[([a-z_]+:\d+)\]")


class Provenance(BaseModel):
    confidence_score: float = Field(ge=0.0, le=1.0)
    sources: List[AISource] = Field(default_factory=list)


def cited_keys(text: Optional[str]) -> set:
    return set(_CITATION.findall(text or ""))


class ProvenanceRecorder(BaseService):
    def __init__(
        self,
        db: Session,
        store: Optional[ReviewStore] = None,
        pipeline: Optional[PipelineSettings] = None,
    ):
        super().__init__(db)
        self.store = store or ReviewStore(db)
        self.pipeline = pipeline or settings.pipeline

    def compute_confidence(self, quality: QualityScore, context: RetrievedContext, meta: GenerationMeta) -> float:
        certainty = meta.self_reported_certainty
        if certainty is None:
            certainty = self.pipeline.default_model_certainty
        penalty = self.pipeline.degradation_penalty if (meta.retrieval_degraded or meta.retried) else 0.0
        raw = (
            0.5 * quality.overall_score / 100.0
            + 0.3 * context.mean_similarity
            + 0.2 * certainty
            - penalty
        )
        return round(max(0.0, min(1.0, raw)), 4)

    @staticmethod
    def collect_sources(
        bundle: Optional[EvidenceBundle],
        content: Optional[GeneratedContent],
        context: RetrievedContext,
    ) -> List[AISource]:
        field_texts = list(content.as_fields().values()) if content else []
        citations = [cited_keys(text) for text in field_texts]

        def weight(key: str) -> float:
            if not citations:
                return 0.0
            return round(sum(1 for c in citations if key in c) / len(citations), 4)

        keys: Dict[str, str] = bundle.source_keys() if bundle is not None else {}
        weights = {key: weight(key) for key in keys}
        if keys and not any(weights.values()):
            uniform = round(1.0 / len(keys), 4)
            weights = {key: uniform for key in keys}

        evidence: Dict[str, EvidenceSource] = {}
        for key, source_type in keys.items():
            # Once anything is cited, only cited evidence is a source
            if weights[key] > 0:
                evidence[key] = EvidenceSource(
                    source_type=source_type,
                    source_id=key.split(":", 1)[1],
                    contribution_weight=weights[key],
                )

        retrieved: List[AISource] = []
        for snippet in context.snippets:
            if snippet.source_id in evidence:
                merged = evidence[snippet.source_id]
                merged.similarity = max(merged.similarity or -1.0, snippet.similarity_score)
                continue
            if snippet.source_id in keys:
                continue
            retrieved.append(RetrievedSource(
                source_id=snippet.source_id,
                similarity=snippet.similarity_score,
                contribution_weight=weight(snippet.source_id),
            ))
        return [*evidence.values(), *retrieved]

    def finalize(
        self,
        quality: QualityScore,
        context: RetrievedContext,
        generation_meta: GenerationMeta,
        bundle: Optional[EvidenceBundle] = None,
        content: Optional[GeneratedContent] = None,
    ) -> Provenance:
        return Provenance(
            confidence_score=self.compute_confidence(quality, context, generation_meta),
            sources=self.collect_sources(bundle, content, context),
        )

    def record(
        self,
        bundle: EvidenceBundle,
        content: GeneratedContent,
        provenance: Provenance,
        quality: QualityScore,
        generation_meta: GenerationMeta,
        actor_id: Optional[int] = None,
        review_id: Optional[int] = None,
        expected_version: Optional[int] = None,
        review_type: Optional[str] = None,
        review_cycle_id: Optional[int] = None,
    ) -> PerformanceReview:
        """Write draft text, confidence and sources together, in one commit."""
        values = {
            **content.as_fields(),
            "status": ReviewStatus.AI_GENERATED.value,
            "is_ai_generated": True,
            "ai_generated_at": utcnow(),
            "ai_confidence_score": provenance.confidence_score,
            "ai_sources": dump_sources(provenance.sources),
            "ai_quality_score": quality.overall_score,
            "ai_retrieval_degraded": generation_meta.retrieval_degraded,
            "ai_original_content": None,
        }
        replaced = {}
        if review_id is None:
            review = self.store.create(
                organization_id=bundle.organization_id,
                employee_id=bundle.employee_id,
                reviewer_id=actor_id,
                review_type=review_type,
                review_cycle_id=review_cycle_id,
                **values,
            )
        else:
            current = self.store.find(review_id)
            if not current.is_ai_generated:
                # Manual draft: keep every hand-written field the generation replaces
                replaced = {f: v for f, v in current.content().items() if v and f in values}
                if replaced:
                    values["human_draft_content"] = {**replaced, **(current.human_draft_content or {})}
            review = self.store.compare_and_swap(review_id, expected_version, values)

        AuditService(self.db, bundle.organization_id).log_action(
            action="review_ai_generated",
            entity_type="performance_review",
            entity_id=review.id,
            user_id=actor_id,
            user_role=None,
            details={
                "confidence": provenance.confidence_score,
                "quality": quality.overall_score,
                "model": generation_meta.model,
                "retried": generation_meta.retried,
                "retrieval_degraded": generation_meta.retrieval_degraded,
                "source_count": len(provenance.sources),
            },
            before_state=replaced or None,
            ai_recommended=True,
        )
        self.commit()
        self.log_info(f"Recorded AI draft for review {review.id} (confidence {provenance.confidence_score:.2f})")
        return review
