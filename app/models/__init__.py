# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import (
    organization, user, employee, objective, feedback, review_cycle,
    performance_review, sentiment_alert, embedding_record,
    audit_log, ai_generation, notification
)

# Explicit class exports for cleaner imports
from .organization import Organization
from .user import User, UserRole
from .employee import Employee
from .objective import Objective, ObjectiveMember
from .feedback import Feedback, FeedbackAnalysis
from .review_cycle import ReviewCycle
from .performance_review import PerformanceReview, ReviewStatus, ReviewType
from .sentiment_alert import SentimentAlert, AlertType, AlertSeverity
from .embedding_record import EmbeddingRecord
from .audit_log import AuditLog
from .ai_generation import AIGeneration
from .notification import Notification

__all__ = [
    "Organization",
    "User",
    "UserRole",
    "Employee",
    "Objective",
    "ObjectiveMember",
    "Feedback",
    "FeedbackAnalysis",
    "ReviewCycle",
    "PerformanceReview",
    "ReviewStatus",
    "ReviewType",
    "SentimentAlert",
    "AlertType",
    "AlertSeverity",
    "EmbeddingRecord",
    "AuditLog",
    "AIGeneration",
    "Notification",
]
