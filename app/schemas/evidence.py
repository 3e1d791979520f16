"""
Evidence projections fed into review generation.
All of these are transient and read-only; they are rebuilt on every run.
"""
from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class EvidenceWindow(BaseModel):
    start: datetime
    end: datetime

    @property
    def days(self) -> float:
        return max((self.end - self.start).total_seconds() / 86400.0, 1.0)


class OkrSummary(BaseModel):
    id: int
    text: str
    timestamp: datetime
    progress: Optional[float] = None
    status: Optional[str] = None


class FeedbackSummary(BaseModel):
    id: int
    text: str
    timestamp: datetime
    sentiment: Optional[float] = None  # known quality score 0-100, if analyzed
    tags: List[str] = Field(default_factory=list)
    giver_name: Optional[str] = None


class ReviewSummary(BaseModel):
    id: int
    text: str
    timestamp: datetime
    overall_rating: Optional[float] = None
    review_type: Optional[str] = None


class EvidenceBundle(BaseModel):
    employee_id: int
    organization_id: int
    employee_name: str
    job_title: Optional[str] = None
    department: Optional[str] = None
    window_start: datetime
    window_end: datetime
    okrs: List[OkrSummary] = Field(default_factory=list)
    feedback_items: List[FeedbackSummary] = Field(default_factory=list)
    prior_reviews: List[ReviewSummary] = Field(default_factory=list)

    @property
    def window(self) -> EvidenceWindow:
        return EvidenceWindow(start=self.window_start, end=self.window_end)

    @property
    def is_empty(self) -> bool:
        return not (self.okrs or self.feedback_items or self.prior_reviews)

    def source_keys(self) -> Dict[str, str]:
        """Citation key -> source type, e.g. {"okr:3": "okr"}."""
        keys = {f"okr:{o.id}": "okr" for o in self.okrs}
        keys.update({f"feedback:{f.id}": "feedback" for f in self.feedback_items})
        keys.update({f"review:{r.id}": "review" for r in self.prior_reviews})
        return keys


class CategoryScore(BaseModel):
    count: int
    expected: float
    coverage: float = Field(ge=0, le=100)
    recency: float = Field(ge=0, le=100)
    score: float = Field(ge=0, le=100)


class QualityScore(BaseModel):
    okr: CategoryScore
    feedback: CategoryScore
    review_history: CategoryScore
    overall_score: float = Field(ge=0, le=100)
    warnings: List[str] = Field(default_factory=list)
