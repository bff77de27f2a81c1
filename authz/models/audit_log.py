import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, String, Text, Uuid

from authz.database import Base
from authz.utils.clock import utcnow


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_type = Column(String(100), nullable=False)
    category = Column(String(50), nullable=False)
    description = Column(Text, nullable=False)
    actor_user_id = Column(Uuid, nullable=True)
    target_user_id = Column(Uuid, nullable=True)
    event_data = Column(JSON, nullable=True)
    severity = Column(String(20), nullable=False, default="low")
    success = Column(Boolean, nullable=False, default=True)
    security_context = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Indexes for performance optimization
    __table_args__ = (
        Index("idx_audit_actor_event_created", "actor_user_id", "event_type", "created_at"),
        Index("idx_audit_target_created", "target_user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, event={self.event_type!r}, actor={self.actor_user_id})>"
