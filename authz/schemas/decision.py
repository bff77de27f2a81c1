from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from authz.constants import DecisionSource


class AuthorizationDecision(BaseModel):
    """Result of an authorization check. Field names are a stable contract."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: str
    source: DecisionSource
    role_id: UUID | None = None
    delegation_id: UUID | None = None
    emergency_override_id: UUID | None = None
    details: dict[str, Any] | None = None
    computed_at: datetime
    # First instant at which any grant behind this decision may change
    valid_until: datetime | None = None

    def to_cache(self) -> dict:
        return self.model_dump(mode="json")

    @classmethod
    def from_cache(cls, payload: dict) -> "AuthorizationDecision":
        return cls.model_validate(payload)
