"""
Role, Permission and PermissionSet models

A role bundles one or more permission sets; a permission set may inherit
from a parent set. Each permission is a dotted action token with an
allow or deny effect.
"""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Table, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from authz.constants import PermissionEffect, RoleState
from authz.database import Base
from authz.utils.clock import utcnow


role_permission_sets = Table(
    "role_permission_sets",
    Base.metadata,
    Column("role_id", Uuid, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_set_id", Uuid, ForeignKey("permission_sets.id", ondelete="CASCADE"), primary_key=True),
)

permission_set_permissions = Table(
    "permission_set_permissions",
    Base.metadata,
    Column("permission_set_id", Uuid, ForeignKey("permission_sets.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", Uuid, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


class Role(Base):
    __tablename__ = "roles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    type = Column(String(50), unique=True, nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    state = Column(String(20), nullable=False, default=RoleState.ACTIVE.value)
    priority = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    permission_sets = relationship("PermissionSet", secondary=role_permission_sets, lazy="selectin")

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, type={self.type!r}, state={self.state!r})>"


class Permission(Base):
    __tablename__ = "permissions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    effect = Column(String(10), nullable=False, default=PermissionEffect.ALLOW.value)
    description = Column(Text, nullable=True)

    __table_args__ = (UniqueConstraint("name", "effect", name="uq_permission_name_effect"),)

    def __repr__(self) -> str:
        return f"<Permission(name={self.name!r}, effect={self.effect!r})>"


class PermissionSet(Base):
    __tablename__ = "permission_sets"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    parent_set_id = Column(Uuid, ForeignKey("permission_sets.id", ondelete="SET NULL"), nullable=True, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    permissions = relationship("Permission", secondary=permission_set_permissions, lazy="selectin")
    parent = relationship("PermissionSet", remote_side=[id])

    def __repr__(self) -> str:
        return f"<PermissionSet(id={self.id}, name={self.name!r}, parent={self.parent_set_id})>"
