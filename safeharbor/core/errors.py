from __future__ import annotations


class SafeHarborError(Exception):
    """Base error for SafeHarbor."""

    code = "SAFEHARBOR_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(SafeHarborError):
    """Referenced id does not resolve to an entity of the expected type."""

    code = "NOT_FOUND"


class AlreadyExistsError(SafeHarborError):
    """A create operation would violate a uniqueness rule."""

    code = "ALREADY_EXISTS"


class ValidationError(SafeHarborError):
    """Caller-supplied value is malformed (names, wire masks)."""

    code = "VALIDATION_ERROR"


class InvalidActionError(ValidationError):
    """Authorization was asked about zero or several capabilities at once."""

    code = "INVALID_ACTION"


class UnauthorizedError(SafeHarborError):
    """Session token failed the integrity or liveness gate, or login failed."""

    code = "AUTH_UNAUTHORIZED"


class ForbiddenError(SafeHarborError):
    """The authorization engine denied the requested capability."""

    code = "AUTH_FORBIDDEN"


class ReferentialIntegrityError(SafeHarborError):
    """Operation would leave an index, child list, or membership inconsistent."""

    code = "CONFLICT"


class InternalError(SafeHarborError):
    """Invariant violated by the system itself; aborts the current operation."""

    code = "INTERNAL_ERROR"


class LockTimeoutError(SafeHarborError):
    """Per-object lock could not be acquired within the configured bound."""

    code = "LOCK_TIMEOUT"


class CollaboratorError(SafeHarborError):
    """Build tool or scan provider reported a failure."""

    code = "COLLABORATOR_ERROR"
