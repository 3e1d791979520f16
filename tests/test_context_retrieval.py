from contextlib import nullcontext
from datetime import datetime

import pytest

from app.core.config import PipelineSettings
from app.core.exceptions import ProviderError
from app.schemas.evidence import EvidenceBundle, FeedbackSummary
from app.services.context_retriever import ContextIndexer, ContextRetriever, build_query
from app.services.embedding_service import HashEmbeddingProvider
from app.services.vector_index import SqlVectorIndex

from tests.fakes import FailingVectorIndex, InMemoryVectorIndex


class FixedEmbedder:
    def __init__(self, vector):
        self.vector = vector

    async def embed(self, text):
        return self.vector


def settings(**overrides):
    values = {"retry_backoff_seconds": 0.0, "min_similarity": 0.7, "top_k": 10}
    values.update(overrides)
    return PipelineSettings(**values)


async def seeded_index():
    index = InMemoryVectorIndex()
    await index.upsert("feedback:1", [1.0, 0.0], {"organization_id": 1, "employee_id": 7, "preview": "exact", "content_type": "feedback"})
    await index.upsert("okr:2", [0.8, 0.6], {"organization_id": 1, "employee_id": 7, "preview": "close", "content_type": "okr",
                                            "timestamp": "2026-05-01T00:00:00"})
    await index.upsert("feedback:3", [0.0, 1.0], {"organization_id": 1, "employee_id": 7, "preview": "unrelated", "content_type": "feedback"})
    await index.upsert("feedback:4", [1.0, 0.0], {"organization_id": 1, "employee_id": 8, "preview": "someone else", "content_type": "feedback"})
    await index.upsert("feedback:5", [1.0, 0.0], {"organization_id": 2, "employee_id": 7, "preview": "other org", "content_type": "feedback"})
    return index


@pytest.mark.asyncio
async def test_retrieve_filters_by_threshold_and_orders_by_similarity():
    index = await seeded_index()
    retriever = ContextRetriever(FixedEmbedder([1.0, 0.0]), index, settings())

    result = await retriever.retrieve("query", employee_id=7, organization_id=1)

    assert result.degraded is False
    ids = [s.source_id for s in result.context.snippets]
    assert ids == ["feedback:1", "okr:2"]
    assert result.context.snippets[1].source_type == "okr"
    assert result.context.snippets[1].timestamp is not None
    assert all(s.similarity_score >= 0.7 for s in result.context.snippets)


@pytest.mark.asyncio
async def test_equal_scores_are_ordered_newest_first():
    index = InMemoryVectorIndex()
    base = {"organization_id": 1, "employee_id": 7, "content_type": "feedback"}
    await index.upsert("feedback:10", [1.0, 0.0], {**base, "timestamp": "2026-01-10T09:00:00"})
    await index.upsert("feedback:11", [1.0, 0.0], {**base})
    # 2026-03-01 01:00 at +02:00 is 2026-02-28 23:00 UTC
    await index.upsert("feedback:12", [1.0, 0.0], {**base, "timestamp": "2026-03-01T01:00:00+02:00"})
    await index.upsert("feedback:13", [1.0, 0.0], {**base, "timestamp": "2026-02-28T23:30:00Z"})
    retriever = ContextRetriever(FixedEmbedder([1.0, 0.0]), index, settings())

    result = await retriever.retrieve("query", employee_id=7, organization_id=1)

    assert [s.source_id for s in result.context.snippets] == ["feedback:13", "feedback:12", "feedback:10", "feedback:11"]
    assert result.context.snippets[1].timestamp == datetime(2026, 2, 28, 23, 0)
    assert result.context.snippets[1].timestamp.tzinfo is None


@pytest.mark.asyncio
async def test_retrieve_caps_results_at_top_k():
    index = await seeded_index()
    retriever = ContextRetriever(FixedEmbedder([1.0, 0.0]), index, settings(min_similarity=-1.0))

    result = await retriever.retrieve("query", employee_id=7, organization_id=1, top_k=1)

    assert [s.source_id for s in result.context.snippets] == ["feedback:1"]


@pytest.mark.asyncio
async def test_retrieve_can_span_the_organization():
    index = await seeded_index()
    retriever = ContextRetriever(FixedEmbedder([1.0, 0.0]), index, settings(restrict_retrieval_to_employee=False))

    result = await retriever.retrieve("query", employee_id=7, organization_id=1)

    ids = {s.source_id for s in result.context.snippets}
    assert "feedback:4" in ids
    assert "feedback:5" not in ids


@pytest.mark.asyncio
async def test_index_failure_degrades_instead_of_failing():
    index = FailingVectorIndex(transient=True)
    retriever = ContextRetriever(FixedEmbedder([1.0, 0.0]), index, settings())

    result = await retriever.retrieve("query", employee_id=7, organization_id=1)

    assert result.degraded is True
    assert len(result.context) == 0
    assert "index unavailable" in result.error
    # Transient failures get exactly one retry
    assert index.queries == 2


@pytest.mark.asyncio
async def test_permanent_index_failure_is_not_retried():
    index = FailingVectorIndex(transient=False)
    retriever = ContextRetriever(FixedEmbedder([1.0, 0.0]), index, settings())

    result = await retriever.retrieve("query", employee_id=7, organization_id=1)

    assert result.degraded is True
    assert index.queries == 1


def test_build_query_mentions_focus_areas_and_evidence():
    bundle = EvidenceBundle(
        employee_id=7, organization_id=1, employee_name="Eli", job_title="SRE",
        window_start=datetime(2026, 1, 1), window_end=datetime(2026, 6, 30),
        feedback_items=[FeedbackSummary(id=1, text="Calm during incidents", timestamp=datetime(2026, 6, 1))],
    )
    query = build_query(bundle, "manager", ["reliability"])
    assert "reliability" in query
    assert "SRE" in query
    assert "Calm during incidents" in query


@pytest.mark.asyncio
async def test_sql_vector_index_round_trip(db_session):
    index = SqlVectorIndex(lambda: nullcontext(db_session))
    await index.upsert("feedback:1", [1.0, 0.0, 0.0], {"organization_id": 1, "employee_id": 7, "content_type": "feedback"})
    await index.upsert("feedback:2", [0.6, 0.8, 0.0], {"organization_id": 1, "employee_id": 7, "content_type": "feedback"})
    await index.upsert("feedback:3", [1.0, 0.0, 0.0], {"organization_id": 1, "employee_id": 9, "content_type": "feedback"})

    matches = await index.query([1.0, 0.0, 0.0], top_k=5, filter={"organization_id": 1, "employee_id": 7})

    assert [m.id for m in matches] == ["feedback:1", "feedback:2"]
    assert matches[0].score == pytest.approx(1.0)
    assert matches[1].score == pytest.approx(0.6)

    # Upsert replaces the stored vector
    await index.upsert("feedback:2", [1.0, 0.0, 0.0], {"organization_id": 1, "employee_id": 7, "content_type": "feedback"})
    matches = await index.query([1.0, 0.0, 0.0], top_k=5, filter={"organization_id": 1, "employee_id": 7})
    assert matches[1].score == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_sql_vector_index_rejects_dimension_mismatch(db_session):
    index = SqlVectorIndex(lambda: nullcontext(db_session))
    await index.upsert("okr:1", [1.0, 0.0], {"organization_id": 1, "content_type": "okr"})

    with pytest.raises(ProviderError) as exc_info:
        await index.query([1.0, 0.0, 0.0], top_k=5, filter={"organization_id": 1})
    assert exc_info.value.transient is False


@pytest.mark.asyncio
async def test_indexer_embeds_okrs_and_feedback(db_session, employee, evidence):
    index = InMemoryVectorIndex()
    count = await ContextIndexer(db_session, HashEmbeddingProvider(), index, settings()).index_employee(employee.id)

    assert count == len(evidence["okrs"]) + len(evidence["feedback"])
    feedback_id = evidence["feedback"][0].id
    item = index.items[f"feedback:{feedback_id}"]
    assert item["metadata"]["employee_id"] == employee.id
    assert item["metadata"]["organization_id"] == employee.organization_id
    assert item["metadata"]["content_type"] == "feedback"
    assert item["metadata"]["preview"] == evidence["feedback"][0].content
