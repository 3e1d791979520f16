import json
from datetime import datetime, timedelta

import pytest

from app.core.config import PipelineSettings
from app.core.exceptions import GenerationParseError, GenerationTimeoutError
from app.core.prompts import EMPTY_EVIDENCE_TEMPLATE, REVIEW_STRICT_RETRY, VALIDATION_STRICT_RETRY
from app.schemas.evidence import EvidenceBundle, FeedbackSummary, OkrSummary
from app.schemas.retrieval import RetrievedContext, RetrievedSnippet
from app.schemas.review import ContentValidation, GeneratedContent, GenerationSkipped, SourceExcerpt
from app.services.quality_assessor import QualityAssessor
from app.services.review_generator import ReviewGenerator, build_messages

from tests.fakes import FakeCompletion, review_json

NOW = datetime(2026, 6, 30)


def bundle_with_evidence():
    return EvidenceBundle(
        employee_id=7,
        organization_id=1,
        employee_name="Eli Engineer",
        job_title="Software Engineer",
        window_start=NOW - timedelta(days=365),
        window_end=NOW,
        okrs=[OkrSummary(id=3, text="Migrate billing", timestamp=NOW - timedelta(days=5))],
        feedback_items=[FeedbackSummary(id=12, text="Great incident work", timestamp=NOW - timedelta(days=2), giver_name="Maya")],
    )


def empty_bundle():
    return EvidenceBundle(
        employee_id=7, organization_id=1, employee_name="Eli Engineer",
        window_start=NOW - timedelta(days=365), window_end=NOW,
    )


def test_messages_carry_citation_markers_and_context():
    bundle = bundle_with_evidence()
    context = RetrievedContext(snippets=[
        RetrievedSnippet(source_id="feedback:99", source_type="feedback", text="Older praise", similarity_score=0.8, confidence=0.8),
    ])
    messages = build_messages(bundle, QualityAssessor().score(bundle), context, "manager", ["delivery"])

    assert [m["role"] for m in messages] == ["system", "user"]
    user = messages[1]["content"]
    assert "[okr:3]" in user
    assert "[feedback:12]" in user
    assert "[feedback:99]" in user
    assert "delivery" in user


@pytest.mark.asyncio
async def test_empty_evidence_skips_the_model_call():
    completion = FakeCompletion()
    bundle = empty_bundle()
    result = await ReviewGenerator(completion).generate(
        bundle, QualityAssessor().score(bundle), RetrievedContext(), "manager"
    )

    assert isinstance(result, GenerationSkipped)
    assert result.reason == "no_evidence"
    assert result.template == EMPTY_EVIDENCE_TEMPLATE
    assert completion.calls == []


@pytest.mark.asyncio
async def test_valid_output_is_parsed_with_metadata():
    completion = FakeCompletion([review_json(certainty=0.9)], model="test-model")
    bundle = bundle_with_evidence()
    result = await ReviewGenerator(completion).generate(
        bundle, QualityAssessor().score(bundle), RetrievedContext(), "manager", retrieval_degraded=True
    )

    assert isinstance(result, GeneratedContent)
    assert result.strengths.startswith("Delivered")
    assert result.meta.model == "test-model"
    assert result.meta.self_reported_certainty == 0.9
    assert result.meta.retried is False
    assert result.meta.retrieval_degraded is True
    assert "meta" not in result.as_fields()
    assert len(completion.calls) == 1


@pytest.mark.asyncio
async def test_unparsable_output_is_retried_once_with_strict_instruction():
    completion = FakeCompletion(["Sure! Here is a great review.", "```json\n" + review_json() + "\n```"])
    bundle = bundle_with_evidence()
    result = await ReviewGenerator(completion).generate(
        bundle, QualityAssessor().score(bundle), RetrievedContext(), "peer"
    )

    assert isinstance(result, GeneratedContent)
    assert result.meta.retried is True
    assert len(completion.calls) == 2
    retry_prompt = completion.calls[1]
    assert retry_prompt[-2] == {"role": "assistant", "content": "Sure! Here is a great review."}
    assert retry_prompt[-1]["content"] == REVIEW_STRICT_RETRY


@pytest.mark.asyncio
async def test_second_parse_failure_raises_with_prompt_and_raw_output():
    missing_fields = json.dumps({"strengths": "Only this"})
    completion = FakeCompletion(["not json at all", missing_fields])
    bundle = bundle_with_evidence()

    with pytest.raises(GenerationParseError) as exc_info:
        await ReviewGenerator(completion).generate(
            bundle, QualityAssessor().score(bundle), RetrievedContext(), "manager"
        )

    details = exc_info.value.details
    assert details["raw_output"] == missing_fields
    assert "Eli Engineer" in details["prompt"]
    assert len(completion.calls) == 2


@pytest.mark.asyncio
async def test_slow_model_call_times_out():
    completion = FakeCompletion(delay=1.0)
    bundle = bundle_with_evidence()
    generator = ReviewGenerator(completion, PipelineSettings(generation_timeout=0.05))

    with pytest.raises(GenerationTimeoutError):
        await generator.generate(bundle, QualityAssessor().score(bundle), RetrievedContext(), "manager")
    assert len(completion.calls) == 1


DRAFT = {
    "strengths": "Led the billing migration and cut incident time in half.",
    "areas_for_improvement": None,
    "achievements": "Closed the Q1 reliability OKR.",
}
SOURCES = [
    SourceExcerpt(source_id="okr:3", text="Migrate billing (100% complete, completed)"),
    SourceExcerpt(source_id="feedback:12", text="Great incident work"),
]


@pytest.mark.asyncio
async def test_validation_reports_unsupported_claims():
    completion = FakeCompletion([json.dumps({
        "is_valid": False,
        "unsupported_claims": ["cut incident time in half"],
        "notes": "No source gives a number for incident time.",
    })])

    verdict = await ReviewGenerator(completion).validate_content(DRAFT, SOURCES)

    assert verdict.is_valid is False
    assert verdict.unsupported_claims == ["cut incident time in half"]
    prompt = completion.calls[0][1]["content"]
    assert "[okr:3] Migrate billing" in prompt
    assert "strengths: Led the billing migration" in prompt
    assert "areas for improvement" not in prompt


@pytest.mark.asyncio
async def test_validation_with_listed_claims_is_never_valid():
    completion = FakeCompletion([json.dumps({"is_valid": True, "unsupported_claims": ["cut incident time in half"]})])

    verdict = await ReviewGenerator(completion).validate_content(DRAFT, SOURCES)

    assert verdict.is_valid is False


@pytest.mark.asyncio
async def test_validation_without_sources_skips_the_model_call():
    completion = FakeCompletion()

    verdict = await ReviewGenerator(completion).validate_content(DRAFT, [])

    assert verdict == ContentValidation(is_valid=False, notes="No recorded sources to check the draft against.")
    assert completion.calls == []


@pytest.mark.asyncio
async def test_validation_parse_failure_is_retried_then_raised():
    completion = FakeCompletion(["Looks fine to me.", json.dumps({"unsupported_claims": []})])

    with pytest.raises(GenerationParseError) as exc_info:
        await ReviewGenerator(completion).validate_content(DRAFT, SOURCES)

    assert len(completion.calls) == 2
    assert completion.calls[1][-1]["content"] == VALIDATION_STRICT_RETRY
    assert exc_info.value.details["reason"].startswith("schema validation failed")
