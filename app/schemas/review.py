from datetime import datetime
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.performance_review import CONTENT_FIELDS, ReviewType
from app.schemas.evidence import QualityScore
from app.schemas.trust import AISource, TrustMetadata


class GenerationMeta(BaseModel):
    model: str
    self_reported_certainty: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    retried: bool = False
    retrieval_degraded: bool = False
    prompt: Optional[str] = None
    raw_output: Optional[str] = None


class GeneratedContent(BaseModel):
    """Structured review fields produced by one model call."""
    strengths: str = Field(min_length=1)
    areas_for_improvement: str = Field(min_length=1)
    achievements: str = Field(min_length=1)
    goals_for_next_period: str = Field(min_length=1)
    development_plan: Optional[str] = None

    # Filled in by the generator, never read from model output
    meta: Optional[GenerationMeta] = Field(default=None, exclude=True)

    def as_fields(self) -> Dict[str, str]:
        return {k: v for k, v in self.model_dump().items() if v is not None}


class GenerationSkipped(BaseModel):
    """Zero-evidence signal: no model call was made; template text is offered instead."""
    reason: str
    template: Dict[str, str]


class GenerateReviewRequest(BaseModel):
    employee_id: int
    review_type: ReviewType = ReviewType.MANAGER
    focus_areas: Optional[List[str]] = None
    review_id: Optional[int] = None
    review_cycle_id: Optional[int] = None
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None


class ReviewResponse(BaseModel):
    id: int
    employee_id: int
    organization_id: int
    review_type: str
    status: str
    version: int
    strengths: Optional[str] = None
    areas_for_improvement: Optional[str] = None
    achievements: Optional[str] = None
    goals_for_next_period: Optional[str] = None
    manager_comments: Optional[str] = None
    employee_comments: Optional[str] = None
    development_plan: Optional[str] = None
    is_ai_generated: bool
    ai_generated_at: Optional[datetime] = None
    ai_confidence_score: Optional[float] = None
    ai_sources: Optional[List[AISource]] = None
    ai_retrieval_degraded: bool = False
    human_edited: bool
    human_edited_at: Optional[datetime] = None
    human_edited_by: Optional[int] = None
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class GenerationOutcome(BaseModel):
    status: Literal["generated", "skipped"]
    review: Optional[ReviewResponse] = None
    quality: Optional[QualityScore] = None
    trust: Optional[TrustMetadata] = None
    skipped: Optional[GenerationSkipped] = None


class ReviewEditRequest(BaseModel):
    field_patches: Dict[str, Optional[str]]
    expected_version: Optional[int] = None

    @field_validator("field_patches")
    @classmethod
    def only_content_fields(cls, value: Dict[str, Optional[str]]) -> Dict[str, Optional[str]]:
        unknown = set(value) - set(CONTENT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown review fields: {sorted(unknown)}")
        if not value:
            raise ValueError("At least one field must be patched")
        return value


class OriginalContentResponse(BaseModel):
    review_id: int
    is_ai_generated: bool
    original: Dict[str, Optional[str]]
    current: Dict[str, Optional[str]]
    edited_fields: List[str]
    human_draft: Dict[str, str] = Field(default_factory=dict)



class SourceExcerpt(BaseModel):
    source_id: str  # citation key, e.g. "feedback:7"
    text: str


class ContentValidation(BaseModel):
    """Model verdict on whether a draft is supported by its sources."""
    is_valid: bool
    unsupported_claims: List[str] = Field(default_factory=list)
    notes: Optional[str] = None


class ReviewValidationResponse(ContentValidation):
    review_id: int
    version: int
    checked_sources: List[str] = Field(default_factory=list)


ReviewResponse.model_rebuild()
GenerationOutcome.model_rebuild()
