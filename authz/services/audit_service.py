"""
Audit emitter

log() writes through a session of its own, separate from whatever session
the caller is using. Each call site states its policy:

- BEST_EFFORT: the write is scheduled in the background; failures are
  logged and dropped. Used on the authorization read path.
- REQUIRED: the write is awaited; failures raise AuditWriteError.

Administrative writes take the required path through entry(): the row is
handed to the store and inserted in the same transaction as the change it
records, so a privilege change never commits without its audit trail.
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authz.config import settings
from authz.exceptions import AuditWriteError
from authz.models import AuditLog
from authz.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)


class AuditPolicy(str, Enum):
    BEST_EFFORT = "best_effort"
    REQUIRED = "required"


class AuditSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AuditCategory(str, Enum):
    AUTHORIZATION = "authorization"
    ROLE_MANAGEMENT = "role_management"
    DELEGATION = "delegation"
    EMERGENCY = "emergency"
    CONFIGURATION = "configuration"


class AuditEventType(str, Enum):
    PERMISSION_CHECK = "permission_check"
    EMERGENCY_ACCESS_GRANTED = "emergency_access_granted"
    ROLE_ASSIGNED = "role_assigned"
    ROLE_REVOKED = "role_revoked"
    DELEGATION_CREATED = "delegation_created"
    DELEGATION_APPROVED = "delegation_approved"
    DELEGATION_REJECTED = "delegation_rejected"
    DELEGATION_REVOKED = "delegation_revoked"
    EMERGENCY_OVERRIDE_ACTIVATED = "emergency_override_activated"
    EMERGENCY_OVERRIDE_DEACTIVATED = "emergency_override_deactivated"
    PERMISSION_SET_UPDATED = "permission_set_updated"
    GRANTS_EXPIRED = "grants_expired"
    ADMIN_ACTION_DENIED = "admin_action_denied"


def validate_event_data(event_data: dict | None) -> None:
    """Raise ValueError if *event_data* cannot be stored as JSON."""
    if event_data:
        try:
            json.dumps(event_data)
        except TypeError as e:
            raise ValueError(f"event_data must be JSON-serializable. Error: {e}") from e


class AuditService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
        enabled: bool | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._enabled = settings.audit_enabled if enabled is None else enabled
        self._pending: set[asyncio.Task] = set()
        self.failures = 0

    def entry(
        self,
        event_type: AuditEventType,
        category: AuditCategory,
        description: str,
        *,
        actor_user_id: UUID | None = None,
        target_user_id: UUID | None = None,
        event_data: dict[str, Any] | None = None,
        severity: AuditSeverity = AuditSeverity.LOW,
        success: bool = True,
        security_context: dict[str, Any] | None = None,
    ) -> AuditLog | None:
        """
        Build a row for the caller to insert in its own transaction, so the
        audit trail and the change it records commit together.

        Returns None when auditing is disabled. Raises AuditWriteError when
        *event_data* cannot be stored.
        """
        if not self._enabled:
            return None
        try:
            validate_event_data(event_data)
        except ValueError as e:
            self.failures += 1
            raise AuditWriteError(event_type.value, str(e)) from e
        return self._build(
            event_type, category, description, actor_user_id, target_user_id,
            event_data, severity, success, security_context,
        )

    async def log(
        self,
        event_type: AuditEventType,
        category: AuditCategory,
        description: str,
        *,
        policy: AuditPolicy,
        actor_user_id: UUID | None = None,
        target_user_id: UUID | None = None,
        event_data: dict[str, Any] | None = None,
        severity: AuditSeverity = AuditSeverity.LOW,
        success: bool = True,
        security_context: dict[str, Any] | None = None,
    ) -> None:
        if not self._enabled:
            return

        entry = self._build(
            event_type, category, description, actor_user_id, target_user_id,
            event_data, severity, success, security_context,
        )

        if policy == AuditPolicy.REQUIRED:
            try:
                await self._persist(entry)
            except Exception as e:
                self.failures += 1
                logger.error(f"Required audit write failed for {event_type.value}: {e}")
                raise AuditWriteError(event_type.value, str(e)) from e
            return

        task = asyncio.create_task(self._persist_best_effort(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for outstanding best-effort writes."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _build(
        self,
        event_type: AuditEventType,
        category: AuditCategory,
        description: str,
        actor_user_id: UUID | None,
        target_user_id: UUID | None,
        event_data: dict[str, Any] | None,
        severity: AuditSeverity,
        success: bool,
        security_context: dict[str, Any] | None,
    ) -> AuditLog:
        return AuditLog(
            event_type=event_type.value,
            category=category.value,
            description=description,
            actor_user_id=actor_user_id,
            target_user_id=target_user_id,
            event_data=event_data,
            severity=severity.value,
            success=success,
            security_context=security_context,
            created_at=self._clock(),
        )

    async def _persist_best_effort(self, entry: AuditLog) -> None:
        try:
            await self._persist(entry)
        except Exception as e:
            self.failures += 1
            logger.error(f"Failed to log audit event {entry.event_type}: {e}")

    async def _persist(self, entry: AuditLog) -> None:
        validate_event_data(entry.event_data)
        async with self._session_factory() as session:
            session.add(entry)
            await session.commit()
