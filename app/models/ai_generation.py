from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, Text, JSON
from app.core.clock import utcnow
from app.database import Base

class AIGeneration(Base):
    """One row per generation attempt, successful or not; feeds the AI metrics endpoint."""
    __tablename__ = "ai_generations"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, index=True, nullable=True)
    employee_id = Column(Integer, index=True, nullable=False)
    review_id = Column(Integer, index=True, nullable=True)
    generation_type = Column(String, default="review")  # review, sentiment
    outcome = Column(String, nullable=False)  # success, skipped, parse_failed, timeout, conflict, error
    prompt = Column(Text, nullable=True)
    raw_output = Column(Text, nullable=True)
    confidence = Column(Float, nullable=True)
    retried = Column(Boolean, default=False)
    retrieval_degraded = Column(Boolean, default=False)
    model_version = Column(String, nullable=True)
    duration_ms = Column(Float, nullable=True)
    details = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow, index=True)
