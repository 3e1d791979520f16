"""
Provenance and trust metadata for AI-generated reviews.
Sources are stored as one homogeneous list of tagged variants so the
persistence layer never needs to special-case evidence vs retrieved context.
"""
from pydantic import BaseModel, Field, TypeAdapter
from typing import Annotated, List, Literal, Optional, Union
from datetime import datetime, timezone
from enum import Enum

class ConfidenceLevel(str, Enum):
    HIGH = "high"       # >= 0.8
    MEDIUM = "medium"   # 0.5 - 0.8
    LOW = "low"         # < 0.5

class EvidenceSource(BaseModel):
    """An evidence item (OKR, feedback, prior review) cited by the draft."""
    kind: Literal["evidence"] = "evidence"
    source_type: Literal["okr", "feedback", "review"]
    source_id: str
    contribution_weight: float = Field(default=0.0, ge=0.0, le=1.0)
    similarity: Optional[float] = Field(default=None, ge=-1.0, le=1.0)  # set when also retrieved as context

class RetrievedSource(BaseModel):
    """A snippet returned by the context retriever."""
    kind: Literal["retrieved"] = "retrieved"
    source_type: Literal["retrieved"] = "retrieved"
    source_id: str
    similarity: float = Field(default=0.0, ge=-1.0, le=1.0)
    contribution_weight: float = Field(default=0.0, ge=0.0, le=1.0)

AISource = Annotated[Union[EvidenceSource, RetrievedSource], Field(discriminator="kind")]

_sources_adapter = TypeAdapter(List[AISource])

def dump_sources(sources: List[AISource]) -> List[dict]:
    return _sources_adapter.dump_python(sources, mode="json")

def load_sources(raw: Optional[List[dict]]) -> List[AISource]:
    return _sources_adapter.validate_python(raw or [])

class TrustMetadata(BaseModel):
    """
    Trust metadata attached to AI-generated outputs returned by the API.
    """
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    confidence_level: ConfidenceLevel = ConfidenceLevel.LOW
    sources: List[AISource] = Field(default_factory=list)
    ai_model: str = "unknown"
    quality_score: Optional[float] = None
    retrieval_degraded: bool = False
    schema_retry: bool = False
    timestamp: Optional[str] = None
    request_id: Optional[str] = None
    requires_human_confirmation: bool = True

    @classmethod
    def from_score(cls, score: float, model: str = "unknown", sources: List[AISource] = None, **kwargs) -> "TrustMetadata":
        """Factory method to create TrustMetadata from a confidence score."""
        if score >= 0.8:
            level = ConfidenceLevel.HIGH
        elif score >= 0.5:
            level = ConfidenceLevel.MEDIUM
        else:
            level = ConfidenceLevel.LOW

        return cls(
            confidence_score=score,
            confidence_level=level,
            ai_model=model,
            sources=sources or [],
            timestamp=datetime.now(timezone.utc).isoformat(),
            **kwargs
        )
