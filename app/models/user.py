"""
User Model.
Actors that read, generate, edit and approve reviews. Authentication lives
outside this service; a user only carries identity, role and organization.
"""
from sqlalchemy import Column, Integer, String, Enum, DateTime, Boolean, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from app.database import Base


class UserRole(str, enum.Enum):
    """
    Hierarchy (most to least permissions):
    - SUPER_ADMIN: Platform-wide access
    - HR_ADMIN: Full HR access within organization
    - HR_MANAGER: Department-level HR access
    - MANAGER: Reviews for direct reports
    - EMPLOYEE: Self-service access
    """
    SUPER_ADMIN = "SUPER_ADMIN"
    HR_ADMIN = "HR_ADMIN"
    HR_MANAGER = "HR_MANAGER"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)
    role = Column(Enum(UserRole), default=UserRole.EMPLOYEE, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True, index=True)

    organization = relationship("Organization", back_populates="users")
    employee_profile = relationship("Employee", back_populates="user", uselist=False)
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User {self.email} ({self.role.value})>"

    @property
    def is_hr(self) -> bool:
        return self.role in [UserRole.HR_ADMIN, UserRole.HR_MANAGER, UserRole.SUPER_ADMIN]

    @property
    def is_manager(self) -> bool:
        return self.role in [UserRole.HR_ADMIN, UserRole.HR_MANAGER, UserRole.MANAGER]
