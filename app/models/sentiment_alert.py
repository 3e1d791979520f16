import enum
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Boolean, JSON
from app.core.clock import utcnow
from app.database import Base


class AlertType(str, enum.Enum):
    SENTIMENT_SHIFT = "sentiment_shift"
    CONCERNING_FEEDBACK = "concerning_feedback"
    QUALITY_DROP = "quality_drop"
    BIAS_DETECTED = "bias_detected"


class AlertSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SentimentAlert(Base):
    """
    Append-only alert log. Rows are never deleted; the only mutation is
    acknowledged False -> True.
    """
    __tablename__ = "sentiment_alerts"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    type = Column(String, nullable=False, index=True)
    severity = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    feedback_ids = Column(JSON, default=list)
    acknowledged = Column(Boolean, default=False, nullable=False, index=True)
    acknowledged_at = Column(DateTime, nullable=True)
    acknowledged_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
