from __future__ import annotations

from typing import Any


class LifecycleError(RuntimeError):
    """Base class for every failure raised by the lifecycle workflows.

    Carries enough context for the transport layer to render a useful message:
    the entity kind, its id and, for state violations, the current and expected
    state.
    """

    kind = "LifecycleError"
    status_code = 400

    def __init__(
        self,
        message: str,
        *,
        entity: str | None = None,
        entity_id: Any = None,
        current: Any = None,
        expected: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.entity_id = entity_id
        self.current = _plain(current)
        self.expected = _plain(expected)

    def to_payload(self) -> dict:
        return {
            "detail": self.message,
            "kind": self.kind,
            "entity": self.entity,
            "entityID": self.entity_id,
            "current": self.current,
            "expected": self.expected,
        }


class NotFoundError(LifecycleError):
    kind = "NotFound"
    status_code = 404


class AlreadyExistsError(LifecycleError):
    kind = "AlreadyExists"
    status_code = 409


class ConflictError(LifecycleError):
    kind = "Conflict"
    status_code = 409


class UnauthorizedError(LifecycleError):
    kind = "Unauthorized"
    status_code = 403


class BadInputError(LifecycleError):
    kind = "BadInput"
    status_code = 400


class StoreError(LifecycleError):
    """Persistence failure. Transient from the caller's point of view."""

    kind = "StoreError"
    status_code = 503


def _plain(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (set, frozenset, list, tuple)):
        return sorted(_plain(item) for item in value)
    return getattr(value, "value", value)
