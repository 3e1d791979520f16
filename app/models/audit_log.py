from sqlalchemy import Column, Integer, String, DateTime, Boolean, JSON
from app.core.clock import utcnow
from app.database import Base

class AuditLog(Base):
    """Append-only audit trail of pipeline actions."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, index=True, nullable=True)
    action = Column(String, nullable=False, index=True)
    entity_type = Column(String, nullable=False)
    entity_id = Column(Integer, nullable=True, index=True)
    user_id = Column(Integer, nullable=True)
    user_role = Column(String, nullable=True)
    request_id = Column(String, nullable=True)
    details = Column(JSON, default=dict)
    ai_recommended = Column(Boolean, default=False)
    before_state = Column(JSON, nullable=True)
    after_state = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
