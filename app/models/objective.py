from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Text, Boolean
from sqlalchemy.orm import relationship
from app.core.clock import utcnow
from app.database import Base


class Objective(Base):
    """OKR objective. Progress is 0-100."""
    __tablename__ = "objectives"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    progress = Column(Float, default=0.0)
    status = Column(String, default="active")  # active, completed, at_risk, cancelled
    level = Column(String, default="individual")  # individual, team, company
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    owner = relationship("Employee", backref="owned_objectives")
    members = relationship("ObjectiveMember", back_populates="objective", cascade="all, delete-orphan")


class ObjectiveMember(Base):
    __tablename__ = "objective_members"

    id = Column(Integer, primary_key=True, index=True)
    objective_id = Column(Integer, ForeignKey("objectives.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    objective = relationship("Objective", back_populates="members")
