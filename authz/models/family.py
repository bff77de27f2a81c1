import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from authz.database import Base
from authz.utils.clock import utcnow


class Family(Base):
    __tablename__ = "families"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    members = relationship("FamilyMember", back_populates="family")


class FamilyMember(Base):
    """Membership edge; soft-deleted via deleted_at."""

    __tablename__ = "family_members"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    family_id = Column(Uuid, ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, nullable=False, index=True)
    joined_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    family = relationship("Family", back_populates="members")

    __table_args__ = (UniqueConstraint("family_id", "user_id", name="uq_family_members_family_user"),)
