"""
Input shape checks shared by every hub operation.

Every public operation validates its identifiers before any lookup or side
effect, so a malformed id fails fast with ``InvalidIdentifierError`` instead
of being treated as "not found".
"""

from __future__ import annotations

import re
from typing import Any
from uuid import UUID

from access_kernel.exceptions import InvalidIdentifierError, ValidationError

SYSTEM_USER_ID = "system"

_SLUG_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.:-]{0,127}")


def require_uuid(field_name: str, value: Any) -> str:
    """Return the canonical string form of a UUID identifier."""
    if isinstance(value, UUID):
        return str(value)
    if not isinstance(value, str):
        raise InvalidIdentifierError(field_name, value)
    try:
        return str(UUID(value))
    except ValueError:
        raise InvalidIdentifierError(field_name, value) from None


def require_user_id(value: Any, *, allow_system: bool = False, field_name: str = "user_id") -> str:
    """User ids are UUIDs; the system actor is accepted only where a caller opts in."""
    if allow_system and value == SYSTEM_USER_ID:
        return SYSTEM_USER_ID
    return require_uuid(field_name, value)


def require_group_id(value: Any, field_name: str = "group_id") -> str:
    return require_uuid(field_name, value)


def require_request_id(value: Any) -> UUID:
    return UUID(require_uuid("request_id", value))


def require_slug(field_name: str, value: Any) -> str:
    """Catalog, flow, resource type and resource ids are plugin-chosen slugs."""
    if not isinstance(value, str) or not _SLUG_RE.fullmatch(value):
        raise InvalidIdentifierError(field_name, value)
    return value


def require_text(field_name: str, value: Any, max_length: int = 4000) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string, got {type(value).__name__}")
    if len(value) > max_length:
        raise ValidationError(
            f"{field_name} exceeds {max_length} characters",
            f"{field_name} is too long",
        )
    return value
