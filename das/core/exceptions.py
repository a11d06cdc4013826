"""
Service-layer exception hierarchy.

Every service raises one of these types; the application-level handlers in
``das.utils.errors`` translate them to HTTP responses once, so blueprints
never build error bodies by hand.

Usage:
    from das.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Action", resource_id=42)
    raise ValidationError("routing is required", details={"routing": "required"})

HTTP mapping:
    ValidationError / InvalidReferenceError  400
    AuthError                                401
    ForbiddenError                           403
    NotFoundError                            404
    ConflictError / InvalidTransitionError   409
    TransactionError                         500
    StoreUnavailableError                    503
"""


class DASError(Exception):
    """Base class; ``status_code`` drives the HTTP mapping."""

    status_code = 500


class ValidationError(DASError):
    """Input is missing or malformed, or breaks a field-level business rule.

    Args:
        message: Human-readable explanation, shown to the caller verbatim.
        details: Optional field-level breakdown. Keys are field names.
    """

    status_code = 400

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidReferenceError(ValidationError):
    """A submission does not reference exactly one valid target record."""


class AuthError(DASError):
    """Missing, malformed or expired bearer token."""

    status_code = 401

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class ForbiddenError(DASError):
    """Authenticated, but the identity may not perform this operation."""

    status_code = 403

    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(message)


class NotFoundError(DASError):
    """Raised when a requested record does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Action", "Approval").
        resource_id: The key that was looked up.
    """

    status_code = 404

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ConflictError(DASError):
    """Raised when a write would duplicate a unique key.

    Args:
        resource: Entity name.
        field: The unique field (or key tuple) that would be duplicated.
        value: The conflicting value.
        message: Optional override for the default message.
    """

    status_code = 409

    def __init__(
        self,
        resource: str,
        field: str,
        value: str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


class InvalidTransitionError(DASError):
    """A state machine move that the current status does not allow."""

    status_code = 409

    def __init__(self, resource: str, current: str, requested: str) -> None:
        self.resource = resource
        self.current = current
        self.requested = requested
        super().__init__(f"{resource} cannot move from '{current}' to '{requested}'")


class TransactionError(DASError):
    """A multi-row workflow write failed and was rolled back.

    The public message is deliberately generic; ``operation`` and the chained
    cause are logged for operators.
    """

    status_code = 500
    public_message = "action could not be completed, please retry"

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(self.public_message)


class StoreUnavailableError(DASError):
    """The datastore could not be reached."""

    status_code = 503

    def __init__(self, message: str = "Datastore unavailable, please retry") -> None:
        super().__init__(message)
