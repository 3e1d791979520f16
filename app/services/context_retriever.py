import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.core.clock import as_naive_utc
from app.core.config import PipelineSettings, settings
from app.core.exceptions import NotFoundError
from app.core.prompts import DEFAULT_FOCUS_AREAS, RETRIEVAL_QUERY_TEMPLATE, get_prompt
from app.models.employee import Employee
from app.models.feedback import Feedback
from app.models.objective import Objective, ObjectiveMember
from app.models.performance_review import PerformanceReview, ReviewStatus
from app.schemas.evidence import EvidenceBundle
from app.schemas.retrieval import RetrievalResult, RetrievedContext, RetrievedSnippet
from app.services.ai_orchestrator import call_with_timeout, retry_read_only
from app.services.base import BaseService
from app.services.providers import EmbeddingProvider, VectorIndex, VectorMatch

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 500
DIGEST_CHARS = 600


def build_query(bundle: EvidenceBundle, review_type: str, focus_areas: Optional[List[str]] = None) -> str:
    """Retrieval query from role, focus areas and a short digest of the freshest evidence."""
    areas = focus_areas or DEFAULT_FOCUS_AREAS.get(review_type, [])
    texts = [o.text for o in bundle.okrs[:3]] + [f.text for f in bundle.feedback_items[:3]]
    digest = " ".join(texts)[:DIGEST_CHARS]
    return get_prompt(
        RETRIEVAL_QUERY_TEMPLATE,
        review_type=review_type,
        job_title=bundle.job_title or "team member",
        focus_areas=", ".join(areas),
        digest=digest or "none",
    )


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Metadata timestamp as naive UTC, so offset-aware and naive values compare."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if isinstance(value, datetime):
        return as_naive_utc(value)
    return None


class ContextRetriever:
    """
    Vector-similarity context lookup.

    Failure here never fails generation: any embedding or index error yields
    an empty context flagged as degraded, which lowers the draft's confidence.
    """

    def __init__(self, embedder: EmbeddingProvider, vector_index: VectorIndex, pipeline: Optional[PipelineSettings] = None):
        self.embedder = embedder
        self.vector_index = vector_index
        self.pipeline = pipeline or settings.pipeline

    async def retrieve(
        self,
        query: str,
        employee_id: Optional[int],
        organization_id: int,
        top_k: Optional[int] = None,
    ) -> RetrievalResult:
        top_k = top_k or self.pipeline.top_k
        filter: Dict[str, Any] = {"organization_id": organization_id}
        if employee_id is not None and self.pipeline.restrict_retrieval_to_employee:
            filter["employee_id"] = employee_id

        backoff = self.pipeline.retry_backoff_seconds
        try:
            vector = await retry_read_only(
                lambda: call_with_timeout(self.embedder.embed(query), self.pipeline.embedding_timeout, "embedding"),
                backoff,
            )
            matches = await retry_read_only(
                lambda: call_with_timeout(
                    self.vector_index.query(vector, top_k * 2, filter), self.pipeline.search_timeout, "vector_index"
                ),
                backoff,
            )
        except Exception as e:
            logger.warning(f"Context retrieval degraded: {e}")
            return RetrievalResult(context=RetrievedContext(), degraded=True, error=str(e))

        snippets = [self._to_snippet(m) for m in matches if m.score >= self.pipeline.min_similarity]
        snippets.sort(key=lambda s: (s.similarity_score, s.timestamp or datetime.min), reverse=True)
        context = RetrievedContext(snippets=snippets[:top_k])
        logger.info(f"Retrieved {len(context)} context snippets (of {len(matches)} candidates)")
        return RetrievalResult(context=context)

    @staticmethod
    def _to_snippet(match: VectorMatch) -> RetrievedSnippet:
        meta = match.metadata or {}
        similarity = max(-1.0, min(1.0, match.score))
        return RetrievedSnippet(
            source_id=match.id,
            source_type=str(meta.get("content_type", "unknown")),
            text=str(meta.get("preview") or ""),
            similarity_score=similarity,
            confidence=max(0.0, similarity),
            timestamp=_parse_timestamp(meta.get("timestamp")),
        )


class ContextIndexer(BaseService):
    """Embeds an employee's OKRs, feedback and finished reviews into the vector index."""

    def __init__(
        self,
        db: Session,
        embedder: EmbeddingProvider,
        vector_index: VectorIndex,
        pipeline: Optional[PipelineSettings] = None,
    ):
        super().__init__(db)
        self.embedder = embedder
        self.vector_index = vector_index
        self.pipeline = pipeline or settings.pipeline

    def _documents(self, employee: Employee) -> List[Dict[str, Any]]:
        docs = []
        member_of = select(ObjectiveMember.objective_id).where(
            ObjectiveMember.employee_id == employee.id, ObjectiveMember.is_active.is_(True)
        )
        objectives = self.db.query(Objective).filter(
            Objective.organization_id == employee.organization_id,
            or_(Objective.owner_id == employee.id, Objective.id.in_(member_of)),
        ).all()
        for o in objectives:
            text = f"{o.title}: {o.description}" if o.description else o.title
            docs.append({"kind": "okr", "id": o.id, "text": text, "timestamp": o.updated_at or o.created_at})

        for f in self.db.query(Feedback).filter(Feedback.receiver_id == employee.id).all():
            docs.append({"kind": "feedback", "id": f.id, "text": f.content, "timestamp": f.created_at})

        reviews = self.db.query(PerformanceReview).filter(
            PerformanceReview.employee_id == employee.id,
            PerformanceReview.status.in_((ReviewStatus.SUBMITTED.value, ReviewStatus.APPROVED.value)),
        ).all()
        for r in reviews:
            text = " ".join(v for v in r.content().values() if v)
            if text:
                docs.append({"kind": "review", "id": r.id, "text": text, "timestamp": r.submitted_at or r.created_at})
        return docs

    async def index_employee(self, employee_id: int) -> int:
        employee = self.db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundError("Employee", employee_id)

        count = 0
        for doc in self._documents(employee):
            vector = await retry_read_only(
                lambda: call_with_timeout(
                    self.embedder.embed(doc["text"]), self.pipeline.embedding_timeout, "embedding"
                ),
                self.pipeline.retry_backoff_seconds,
            )
            await self.vector_index.upsert(
                f"{doc['kind']}:{doc['id']}",
                vector,
                {
                    "organization_id": employee.organization_id,
                    "employee_id": employee.id,
                    "content_type": doc["kind"],
                    "source_id": str(doc["id"]),
                    "preview": doc["text"][:PREVIEW_CHARS],
                    "timestamp": doc["timestamp"].isoformat() if doc["timestamp"] else None,
                },
            )
            count += 1

        self.log_info(f"Indexed {count} documents for employee {employee_id}")
        return count
