"""
Reusable builders for store-backed tests

Provides helpers for:
- Scope payloads in their stored JSON form
- Families and memberships
- Role assignments and delegations written straight through the store
"""

import uuid
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import update

from authz.auth import create_access_token
from authz.constants import RoleType
from authz.models import Family, FamilyMember


def auth_headers(user_id: UUID) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


def global_scope() -> dict:
    return {"type": "global"}


def family_scope(*family_ids: UUID) -> dict:
    return {"type": "family", "entity_ids": [str(f) for f in family_ids]}


def individual_scope(*entity_ids: UUID) -> dict:
    return {"type": "individual", "entity_ids": [str(e) for e in entity_ids]}


async def add_family(session_factory, *member_ids: UUID, name: str = "Test family") -> UUID:
    """Create a family with the given members and return its id"""
    family_id = uuid.uuid4()
    async with session_factory() as session, session.begin():
        session.add(Family(id=family_id, name=name))
        await session.flush()
        for member_id in member_ids:
            session.add(FamilyMember(family_id=family_id, user_id=member_id))
    return family_id


async def remove_member(session_factory, family_id: UUID, user_id: UUID, when: datetime) -> None:
    """Soft-delete a membership"""
    async with session_factory() as session, session.begin():
        await session.execute(
            update(FamilyMember)
            .where(FamilyMember.family_id == family_id, FamilyMember.user_id == user_id)
            .values(deleted_at=when)
        )


async def grant_role(
    container,
    role_ids: dict[str, UUID],
    user_id: UUID,
    role_type: RoleType,
    scopes: list | dict | None = None,
    **kwargs,
) -> UUID:
    """Create an assignment directly in the store, skipping admin eligibility"""
    return await container.store.create_assignment(
        user_id=user_id,
        role_id=role_ids[role_type.value],
        granted_by=None,
        scopes=scopes if scopes is not None else [global_scope()],
        valid_from=kwargs.pop("valid_from", container.store.now()),
        valid_until=kwargs.pop("valid_until", None),
        **kwargs,
    )


async def delegate(
    container,
    role_ids: dict[str, UUID],
    from_user_id: UUID,
    to_user_id: UUID,
    role_type: RoleType,
    scope: dict,
    *,
    permissions: list[str] | None = None,
    hours: int = 24,
    active: bool = True,
) -> UUID:
    """Create a delegation directly in the store; active unless told otherwise"""
    now = container.store.now()
    return await container.store.create_delegation(
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        role_id=role_ids[role_type.value],
        scope=scope,
        valid_from=now,
        valid_until=now + timedelta(hours=hours),
        permissions=permissions,
        requires_approval=not active,
    )
