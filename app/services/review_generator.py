import asyncio
import json
import logging
from typing import Dict, List, Optional, Union

from app.core.config import PipelineSettings, settings
from app.core.exceptions import GenerationTimeoutError
from app.core.prompts import (
    DEFAULT_FOCUS_AREAS,
    EMPTY_EVIDENCE_TEMPLATE,
    REVIEW_STRICT_RETRY,
    REVIEW_SYSTEM_TEMPLATE,
    REVIEW_TONES,
    REVIEW_TYPE_GUIDELINES,
    REVIEW_USER_TEMPLATE,
    VALIDATION_STRICT_RETRY,
    VALIDATION_SYSTEM,
    VALIDATION_USER_TEMPLATE,
    get_prompt,
)
from app.schemas.evidence import EvidenceBundle, QualityScore
from app.schemas.retrieval import RetrievedContext
from app.schemas.review import ContentValidation, GeneratedContent, GenerationMeta, GenerationSkipped, SourceExcerpt
from app.services.providers import Completion, CompletionProvider
from app.services.response_parsing import complete_and_parse, extract_json_object

logger = logging.getLogger(__name__)

Message = Dict[str, str]


def _digest(lines: List[str]) -> str:
    return "\n".join(lines) if lines else "(none recorded)"


def build_messages(
    bundle: EvidenceBundle,
    quality: QualityScore,
    context: RetrievedContext,
    review_type: str,
    focus_areas: Optional[List[str]] = None,
) -> List[Message]:
    areas = focus_areas or DEFAULT_FOCUS_AREAS.get(review_type, [])
    system = get_prompt(
        REVIEW_SYSTEM_TEMPLATE,
        review_type=review_type,
        tone=REVIEW_TONES.get(review_type, "professional and constructive"),
        type_guidelines=REVIEW_TYPE_GUIDELINES.get(review_type, ""),
    )
    user = get_prompt(
        REVIEW_USER_TEMPLATE,
        employee_name=bundle.employee_name,
        job_title=bundle.job_title or "N/A",
        department=bundle.department or "N/A",
        window_start=bundle.window_start.date().isoformat(),
        window_end=bundle.window_end.date().isoformat(),
        focus_areas=", ".join(areas) or "general performance",
        quality_overall=quality.overall_score,
        okr_digest=_digest([f"- [okr:{o.id}] {o.text}" for o in bundle.okrs]),
        feedback_digest=_digest([
            f"- [feedback:{f.id}] ({f.timestamp.date().isoformat()}"
            + (f", from {f.giver_name}" if f.giver_name else "")
            + f") {f.text}"
            for f in bundle.feedback_items
        ]),
        review_digest=_digest([
            f"- [review:{r.id}] ({r.review_type or 'review'}, {r.timestamp.date().isoformat()}) {r.text}"
            for r in bundle.prior_reviews
        ]),
        context_digest=_digest([
            f"- [{s.source_id}] (similarity {s.similarity_score:.2f}) {s.text}"
            for s in context.snippets
        ]),
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def _certainty(completion: Completion) -> Optional[float]:
    if completion.self_reported_certainty is not None:
        return max(0.0, min(1.0, completion.self_reported_certainty))
    data = extract_json_object(completion.text) or {}
    try:
        return max(0.0, min(1.0, float(data["certainty"])))
    except (KeyError, TypeError, ValueError):
        return None


class ReviewGenerator:
    """
    One generative call per review, parsed strictly.

    A parse failure gets exactly one retry with a stricter instruction; a
    second failure raises GenerationParseError. Calls are never retried for
    transport errors or timeouts.
    """

    def __init__(self, completion: CompletionProvider, pipeline: Optional[PipelineSettings] = None):
        self.completion = completion
        self.pipeline = pipeline or settings.pipeline

    async def _call(self, messages: List[Message]) -> Completion:
        try:
            return await asyncio.wait_for(
                self.completion.complete(messages, self.pipeline.generation_max_tokens),
                timeout=self.pipeline.generation_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Generation call exceeded {self.pipeline.generation_timeout:g}s")
            raise GenerationTimeoutError(self.pipeline.generation_timeout)

    async def generate(
        self,
        bundle: EvidenceBundle,
        quality: QualityScore,
        context: RetrievedContext,
        review_type: str,
        focus_areas: Optional[List[str]] = None,
        retrieval_degraded: bool = False,
    ) -> Union[GeneratedContent, GenerationSkipped]:
        if bundle.is_empty:
            logger.info(f"No evidence for employee {bundle.employee_id}; skipping generation")
            return GenerationSkipped(reason="no_evidence", template=dict(EMPTY_EVIDENCE_TEMPLATE))

        content, completion, messages, retried = await complete_and_parse(
            self._call,
            build_messages(bundle, quality, context, review_type, focus_areas),
            GeneratedContent,
            REVIEW_STRICT_RETRY,
            "Review",
        )
        meta = GenerationMeta(
            model=completion.model,
            self_reported_certainty=_certainty(completion),
            retried=retried,
            retrieval_degraded=retrieval_degraded,
            prompt=json.dumps(messages),
            raw_output=completion.text,
        )
        return content.model_copy(update={"meta": meta})

    async def validate_content(self, content: Dict[str, Optional[str]], sources: List[SourceExcerpt]) -> ContentValidation:
        """
        Ask the model which claims in ``content`` its sources do not support.

        An empty draft is trivially valid. Without sources nothing can be
        supported, so a non-empty draft is reported invalid without a model call.
        """
        draft = {field: text for field, text in content.items() if text}
        if not draft:
            return ContentValidation(is_valid=True, notes="The draft has no text to check.")
        if not sources:
            return ContentValidation(is_valid=False, notes="No recorded sources to check the draft against.")

        messages = [
            {"role": "system", "content": VALIDATION_SYSTEM},
            {"role": "user", "content": get_prompt(
                VALIDATION_USER_TEMPLATE,
                content=_digest([f"{field.replace('_', ' ')}: {text}" for field, text in draft.items()]),
                sources=_digest([f"- [{s.source_id}] {s.text}" for s in sources]),
            )},
        ]
        verdict, _, _, _ = await complete_and_parse(
            self._call, messages, ContentValidation, VALIDATION_STRICT_RETRY, "Validation",
            failure_message="AI output could not be parsed; the draft was not validated.",
        )
        if verdict.unsupported_claims and verdict.is_valid:
            # A verdict listing unsupported claims is never valid
            verdict = verdict.model_copy(update={"is_valid": False})
        logger.info(f"Validated draft against {len(sources)} sources: {len(verdict.unsupported_claims)} unsupported claims")
        return verdict
