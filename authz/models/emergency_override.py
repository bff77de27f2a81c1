import uuid

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, Index, Integer, String, Text, Uuid

from authz.database import Base
from authz.utils.clock import utcnow


class EmergencyOverride(Base):
    """Short-lived broad grant for crisis response. Not scope-checked."""

    __tablename__ = "emergency_overrides"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    triggered_by = Column(Uuid, nullable=False)
    user_id = Column(Uuid, nullable=False, index=True)
    reason = Column(String(50), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    granted_permissions = Column(JSON, nullable=False, default=list)
    notified_users = Column(JSON, nullable=False, default=list)
    justification = Column(Text, nullable=False)

    activated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    deactivated_at = Column(DateTime(timezone=True), nullable=True)
    deactivated_by = Column(Uuid, nullable=True)
    deactivation_reason = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("duration_minutes BETWEEN 1 AND 1440", name="ck_emergency_overrides_duration"),
        Index("ix_emergency_overrides_user_active", "user_id", "deactivated_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<EmergencyOverride(id={self.id}, user={self.user_id}, reason={self.reason!r})>"


class EmergencyOverrideGuard(Base):
    """
    One row per user who has ever had an override activated. Activation
    locks the row before checking for an active override, so concurrent
    activations for the same user serialise in the database.
    """

    __tablename__ = "emergency_override_guards"

    user_id = Column(Uuid, primary_key=True)
    last_activated_at = Column(DateTime(timezone=True), nullable=True)
