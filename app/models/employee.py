"""
Employee Model.
Read-only from the pipeline's perspective; maintained by the HR CRUD service.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from app.core.clock import utcnow
from app.database import Base


class Employee(Base):
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, unique=True)
    manager_id = Column(Integer, ForeignKey("employees.id"), nullable=True, index=True)

    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    job_title = Column(String, nullable=True)
    department = Column(String, nullable=True)
    focus_areas = Column(JSON, default=list)  # e.g. ["leadership", "delivery"]
    created_at = Column(DateTime, default=utcnow)

    organization = relationship("Organization", back_populates="employees")
    user = relationship("User", back_populates="employee_profile")
    manager = relationship("Employee", remote_side=[id], backref="direct_reports")

    def __repr__(self):
        return f"<Employee {self.id}: {self.name}>"
