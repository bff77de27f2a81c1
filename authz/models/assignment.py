"""
RoleAssignment Model

A user-to-role edge. Scopes and the optional recurring schedule are stored
as JSON and validated into structured types by the store adapter when read.
Assignments are never deleted; revocation and expiry are state transitions.
"""

import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import relationship

from authz.constants import AssignmentState
from authz.database import Base
from authz.utils.clock import utcnow


class RoleAssignment(Base):
    __tablename__ = "role_assignments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    role_id = Column(Uuid, ForeignKey("roles.id", ondelete="RESTRICT"), nullable=False)
    granted_by = Column(Uuid, nullable=True)
    reason = Column(Text, nullable=True)

    # [{"type": "family", "entity_ids": ["..."]}, ...]
    scopes = Column(JSON, nullable=False, default=list)
    # {"days": [1, 2], "time_start": "09:00", "time_end": "17:00", "timezone": "Europe/Berlin"}
    recurring_schedule = Column(JSON, nullable=True)

    state = Column(String(20), nullable=False, default=AssignmentState.ACTIVE.value)
    assigned_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    valid_from = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=True)

    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revoked_by = Column(Uuid, nullable=True)
    revoke_reason = Column(Text, nullable=True)

    role = relationship("Role", lazy="joined")

    __table_args__ = (
        Index("ix_role_assignments_user_state", "user_id", "state"),
        Index("ix_role_assignments_role_state", "role_id", "state"),
    )

    def __repr__(self) -> str:
        return f"<RoleAssignment(id={self.id}, user={self.user_id}, role={self.role_id}, state={self.state!r})>"
