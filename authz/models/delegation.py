import uuid

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import relationship

from authz.constants import DelegationState
from authz.database import Base
from authz.utils.clock import utcnow


class Delegation(Base):
    """Time-boxed transfer of a role from one user to another."""

    __tablename__ = "delegations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    from_user_id = Column(Uuid, nullable=False, index=True)
    to_user_id = Column(Uuid, nullable=False, index=True)
    role_id = Column(Uuid, ForeignKey("roles.id", ondelete="RESTRICT"), nullable=False)
    reason = Column(Text, nullable=True)

    scope = Column(JSON, nullable=False)
    # Optional explicit subset of the role's permission names
    permissions = Column(JSON, nullable=True)

    requires_approval = Column(Boolean, nullable=False, default=True)
    state = Column(String(20), nullable=False, default=DelegationState.PENDING.value)
    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    decided_by = Column(Uuid, nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    decision_reason = Column(Text, nullable=True)

    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revoked_by = Column(Uuid, nullable=True)
    revoke_reason = Column(Text, nullable=True)

    role = relationship("Role", lazy="joined")

    __table_args__ = (
        CheckConstraint("from_user_id <> to_user_id", name="ck_delegations_no_self_delegation"),
        CheckConstraint("valid_until > valid_from", name="ck_delegations_valid_window"),
        Index("ix_delegations_to_user_state", "to_user_id", "state"),
    )

    def __repr__(self) -> str:
        return (
            f"<Delegation(id={self.id}, from={self.from_user_id}, to={self.to_user_id}, "
            f"role={self.role_id}, state={self.state!r})>"
        )
