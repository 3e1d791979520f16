from sqlalchemy import Column, Integer, String, DateTime, JSON, Text
from app.core.clock import utcnow
from app.database import Base

class EmbeddingRecord(Base):
    """Vector row for the SQL-backed index. Store as JSON for SQLite, or use pgvector for PostgreSQL."""
    __tablename__ = "embedding_records"

    id = Column(String, primary_key=True)  # e.g. "feedback:12"
    organization_id = Column(Integer, index=True, nullable=False)
    employee_id = Column(Integer, index=True, nullable=True)
    content_type = Column(String, nullable=False)
    source_id = Column(String, nullable=False)
    embedding_vector = Column(JSON, nullable=False)
    record_metadata = Column("metadata", JSON, default=dict)
    preview = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
