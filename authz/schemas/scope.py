"""
Scope descriptors

Scopes are stored as loose JSON; they are parsed into this tagged union at
the store boundary so business logic never sees raw dictionaries. Data that
fails validation becomes an UnmatchableScope, which never matches anything.
"""

import logging
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)


class GlobalScope(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["global"] = "global"
    entity_ids: tuple[UUID, ...] = ()


class FamilyScope(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["family"] = "family"
    entity_ids: tuple[UUID, ...] = Field(..., min_length=1)


class IndividualScope(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["individual"] = "individual"
    entity_ids: tuple[UUID, ...] = Field(..., min_length=1)


class UnmatchableScope(BaseModel):
    """Placeholder for stored scope data that could not be validated."""

    model_config = ConfigDict(frozen=True)

    type: Literal["unmatchable"] = "unmatchable"
    raw: Any = None


Scope = Annotated[Union[GlobalScope, FamilyScope, IndividualScope], Field(discriminator="type")]

_scope_adapter = TypeAdapter(Scope)


def parse_scope(raw: Any) -> GlobalScope | FamilyScope | IndividualScope | UnmatchableScope:
    try:
        return _scope_adapter.validate_python(raw)
    except PydanticValidationError as e:
        logger.warning(f"Malformed scope treated as non-matching: {raw!r} ({e.error_count()} errors)")
        return UnmatchableScope(raw=raw)


def parse_scopes(raw: Any) -> tuple:
    if not isinstance(raw, list):
        logger.warning(f"Malformed scope list treated as non-matching: {raw!r}")
        return (UnmatchableScope(raw=raw),)
    return tuple(parse_scope(item) for item in raw)


def dump_scope(scope: GlobalScope | FamilyScope | IndividualScope) -> dict:
    return scope.model_dump(mode="json")
