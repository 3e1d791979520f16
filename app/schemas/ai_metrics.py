from datetime import datetime
from typing import Dict, List, Literal
from pydantic import BaseModel, Field


class GenerationStats(BaseModel):
    total_generations: int
    success_rate: float  # percent
    average_confidence: float
    average_duration_ms: float
    retry_rate: float  # percent of attempts that needed the strict-schema retry
    degraded_rate: float  # percent of attempts with degraded retrieval


class QualityMetrics(BaseModel):
    ai_reviews: int
    edited_reviews: int
    edit_rate: float
    acceptance_rate: float


class DailyGenerations(BaseModel):
    date: str
    generations: int
    success_rate: float
    average_confidence: float


class AIMetrics(BaseModel):
    period_start: datetime
    period_end: datetime
    generation_stats: GenerationStats
    quality_metrics: QualityMetrics
    outcomes: Dict[str, int] = Field(default_factory=dict)
    usage_by_type: Dict[str, int] = Field(default_factory=dict)
    time_series: List[DailyGenerations] = Field(default_factory=list)


class AIHealthStatus(BaseModel):
    status: Literal["healthy", "warning", "critical"]
    issues: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    last_updated: datetime
