"""
Reference data seeding

Creates the permission catalogue, one "<role>-defaults" permission set per
role type and the roles themselves from DEFAULT_ROLE_PERMISSIONS. Safe to
run repeatedly: existing rows are reused, never duplicated.
"""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authz.constants import ROLE_PRIORITY, PermissionEffect, RoleState
from authz.models import Permission, PermissionSet, Role
from authz.permissions_config.permissions import DEFAULT_ROLE_PERMISSIONS

logger = logging.getLogger(__name__)


async def seed_default_roles(session_factory: async_sessionmaker[AsyncSession]) -> dict[str, UUID]:
    """Seed roles and their default permission sets. Returns role type -> role id."""
    async with session_factory() as session, session.begin():
        result = await session.execute(select(Permission))
        catalogue = {(p.name, p.effect): p for p in result.scalars().all()}

        def permission(name: str, effect: PermissionEffect) -> Permission:
            key = (name, effect.value)
            if key not in catalogue:
                catalogue[key] = Permission(name=name, effect=effect.value)
                session.add(catalogue[key])
            return catalogue[key]

        role_ids: dict[str, UUID] = {}
        for role_type, grants in DEFAULT_ROLE_PERMISSIONS.items():
            wanted = [permission(name, PermissionEffect.ALLOW) for name in grants["allow"]]
            wanted += [permission(name, PermissionEffect.DENY) for name in grants["deny"]]

            set_name = f"{role_type.value}-defaults"
            result = await session.execute(select(PermissionSet).where(PermissionSet.name == set_name))
            permission_set = result.scalar_one_or_none()
            if permission_set is None:
                permission_set = PermissionSet(
                    name=set_name,
                    description=f"Default permissions for the {role_type.value} role",
                    permissions=wanted,
                )
                session.add(permission_set)

            result = await session.execute(select(Role).where(Role.type == role_type.value))
            role = result.scalar_one_or_none()
            if role is None:
                role = Role(
                    type=role_type.value,
                    name=role_type.value.replace("_", " ").title(),
                    state=RoleState.ACTIVE.value,
                    priority=ROLE_PRIORITY[role_type],
                    permission_sets=[permission_set],
                )
                session.add(role)

            await session.flush()
            role_ids[role_type.value] = role.id

    logger.info(f"Seeded {len(role_ids)} roles and {len(catalogue)} permissions")
    return role_ids
