"""
Performance Review (draft) Model.

A review is created either by the generation pipeline (status ai_generated)
or by a human (status draft). AI provenance fields are all-or-nothing: when
is_ai_generated is true, ai_generated_at, ai_confidence_score and ai_sources
are set together. The AI text of every field a human later edits is kept in
ai_original_content and is never overwritten. Likewise, hand-written draft
text replaced by a generation is kept in human_draft_content.
"""
import enum
from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Text, Boolean, JSON
from sqlalchemy.orm import relationship
from app.core.clock import utcnow
from app.database import Base


class ReviewStatus(str, enum.Enum):
    DRAFT = "draft"
    AI_GENERATED = "ai_generated"
    HUMAN_EDITED = "human_edited"
    SUBMITTED = "submitted"
    APPROVED = "approved"


class ReviewType(str, enum.Enum):
    SELF = "self"
    MANAGER = "manager"
    PEER = "peer"
    THREE_SIXTY = "360"
    UPWARD = "upward"


# Structured text fields, in display order
CONTENT_FIELDS = (
    "strengths",
    "areas_for_improvement",
    "achievements",
    "goals_for_next_period",
    "manager_comments",
    "employee_comments",
    "development_plan",
)

# Fields the generator fills
GENERATED_FIELDS = (
    "strengths",
    "areas_for_improvement",
    "achievements",
    "goals_for_next_period",
)


class PerformanceReview(Base):
    __tablename__ = "performance_reviews"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    reviewer_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    review_cycle_id = Column(Integer, ForeignKey("review_cycles.id"), nullable=True)
    review_type = Column(String, default=ReviewType.MANAGER.value, nullable=False)
    status = Column(String, default=ReviewStatus.DRAFT.value, nullable=False, index=True)
    overall_rating = Column(Float, nullable=True)

    # Review content
    strengths = Column(Text, nullable=True)
    areas_for_improvement = Column(Text, nullable=True)
    achievements = Column(Text, nullable=True)
    goals_for_next_period = Column(Text, nullable=True)
    manager_comments = Column(Text, nullable=True)
    employee_comments = Column(Text, nullable=True)
    development_plan = Column(Text, nullable=True)

    # AI provenance
    is_ai_generated = Column(Boolean, default=False, nullable=False)
    ai_generated_at = Column(DateTime, nullable=True)
    ai_confidence_score = Column(Float, nullable=True)  # 0.0 - 1.0
    ai_sources = Column(JSON, nullable=True)  # [{source_type, source_id, contribution_weight, ...}]
    ai_quality_score = Column(Float, nullable=True)  # evidence quality 0-100 at generation time
    ai_retrieval_degraded = Column(Boolean, default=False, nullable=False)
    ai_original_content = Column(JSON, nullable=True)  # {field: original AI text}
    human_draft_content = Column(JSON, nullable=True)  # {field: hand-written text replaced by a generation}

    # Human edit tracking (monotonic once set)
    human_edited = Column(Boolean, default=False, nullable=False)
    human_edited_at = Column(DateTime, nullable=True)
    human_edited_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    submitted_at = Column(DateTime, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Optimistic concurrency counter, compared-and-swapped on every write
    version = Column(Integer, default=1, nullable=False)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    employee = relationship("Employee", backref="performance_reviews")

    def content(self) -> dict:
        return {field: getattr(self, field) for field in CONTENT_FIELDS}

    def __repr__(self):
        return f"<PerformanceReview {self.id} employee={self.employee_id} status={self.status} v{self.version}>"
