from datetime import datetime
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

Tone = Literal["positive", "neutral", "constructive", "negative"]
Period = Literal["week", "month", "quarter", "year"]
Trend = Literal["improving", "stable", "declining"]


class SentimentResult(BaseModel):
    feedback_id: int
    employee_id: int
    tone: Tone
    quality_score: float = Field(ge=0, le=100)
    specificity: float = Field(ge=0, le=100)
    actionability: float = Field(ge=0, le=100)
    bias_indicators: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    summary: Optional[str] = None
    alerts_raised: List[int] = Field(default_factory=list)


class TrendBucket(BaseModel):
    period: str  # e.g. "2026-03", "2026-W11", "2026-Q2", "2026"
    count: int
    average_quality: float
    moving_average: float
    tone_counts: Dict[str, int] = Field(default_factory=dict)
    feedback_ids: List[int] = Field(default_factory=list)


class SentimentTrend(BaseModel):
    employee_id: int
    period: Period
    trend: Trend
    average_quality: float
    buckets: List[TrendBucket] = Field(default_factory=list)
    alerts_raised: List[int] = Field(default_factory=list)


class BatchAnalysisResult(BaseModel):
    total: int
    analyzed: int
    failed: int
    failed_feedback_ids: List[int] = Field(default_factory=list)
    results: List[SentimentResult] = Field(default_factory=list)


class BatchAnalysisRequest(BaseModel):
    employee_id: Optional[int] = None
    only_unanalyzed: bool = True


class SentimentAlertResponse(BaseModel):
    id: int
    employee_id: int
    type: str
    severity: str
    message: str
    feedback_ids: List[int] = Field(default_factory=list)
    acknowledged: bool
    acknowledged_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BiasTypeCount(BaseModel):
    type: str
    count: int


class BiasSummary(BaseModel):
    total_feedback: int
    bias_detected: int
    bias_percentage: float
    common_bias_types: List[BiasTypeCount] = Field(default_factory=list)


SentimentAlertResponse.model_rebuild()


class ImprovementSuggestion(BaseModel):
    """Rewritten feedback as returned by the model."""
    improved: str = Field(min_length=1)
    changes: List[str] = Field(default_factory=list)


class FeedbackImprovement(BaseModel):
    feedback_id: int
    original: str
    improved: str
    changes: List[str] = Field(default_factory=list)
