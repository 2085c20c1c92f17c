from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TypeVar

from models.asset_models import Role
from services.errors import BadInputError


E = TypeVar("E", bound=enum.Enum)


@dataclass(frozen=True)
class Actor:
    """Pre-authenticated caller identity, resolved by the transport layer."""

    employee_id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def coerce_enum(enum_cls: type[E], raw, field: str) -> E:
    if isinstance(raw, enum_cls):
        return raw
    candidate = str(getattr(raw, "value", raw) or "").strip()
    for member in enum_cls:
        if candidate.upper() in (member.name, str(member.value).upper()):
            return member
    allowed = ", ".join(str(member.value) for member in enum_cls)
    raise BadInputError(f"Invalid {field}: {raw!r}. Allowed values: {allowed}.", expected=allowed)


def require_text(raw: str | None, field: str, max_length: int | None = None) -> str:
    value = (raw or "").strip()
    if not value:
        raise BadInputError(f"{field} is required.")
    if max_length is not None and len(value) > max_length:
        raise BadInputError(f"{field} must not exceed {max_length} characters.")
    return value
