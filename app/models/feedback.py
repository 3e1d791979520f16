from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship
from app.core.clock import utcnow
from app.database import Base


class Feedback(Base):
    __tablename__ = "feedback"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    giver_id = Column(Integer, ForeignKey("employees.id"), nullable=True)
    receiver_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    tags = Column(JSON, default=list)
    visibility = Column(String, default="private")
    created_at = Column(DateTime, default=utcnow, index=True)

    giver = relationship("Employee", foreign_keys=[giver_id])
    receiver = relationship("Employee", foreign_keys=[receiver_id])
    analysis = relationship("FeedbackAnalysis", back_populates="feedback", uselist=False, cascade="all, delete-orphan")


class FeedbackAnalysis(Base):
    """Latest sentiment/bias analysis of a single feedback item."""
    __tablename__ = "feedback_analyses"

    id = Column(Integer, primary_key=True, index=True)
    feedback_id = Column(Integer, ForeignKey("feedback.id", ondelete="CASCADE"), unique=True, nullable=False)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    tone = Column(String, nullable=False)  # positive, neutral, constructive, negative
    quality_score = Column(Float, nullable=False)  # 0-100
    specificity = Column(Float, nullable=False)
    actionability = Column(Float, nullable=False)
    bias_indicators = Column(JSON, default=list)
    keywords = Column(JSON, default=list)
    summary = Column(Text, nullable=True)
    feedback_created_at = Column(DateTime, nullable=False, index=True)
    analyzed_at = Column(DateTime, default=utcnow)

    feedback = relationship("Feedback", back_populates="analysis")
