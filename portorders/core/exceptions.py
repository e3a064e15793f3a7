"""
Service-layer exception hierarchy.

Every service raises one of these types; blueprints register a handler per
type once and get the same HTTP status codes everywhere:

    ValidationError     → 422  (client-correctable, field-level details)
    AuthorizationError  → 403  (actor lacks ownership or membership)
    NotFoundError       → 404  (missing, expired or completed resource)
    ConflictError       → 409  (state already claimed by another request)
    ConsistencyError    → 500  (integrity failure, generic "please retry")

Usage:
    from portorders.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="WizardSession", resource_id=42)
    raise ValidationError("Previous step incomplete", details={"step": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist or is no longer usable.

    Expired and completed wizard sessions are reported through this type as
    well: once past its lifetime a session is indistinguishable from a
    deleted one.

    Args:
        resource: Human-readable entity name (e.g. "Order", "WizardSession").
        resource_id: The PK that was looked up. Included in logs and message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Covers missing or unknown ids, out-of-order wizard steps, empty
    selections and illegal OrderGroup transitions.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names;
                 values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class AuthorizationError(Exception):
    """Raised when the acting user/organization may not perform an operation.

    Always raised before any row is touched.
    """

    def __init__(self, message: str = "Not allowed") -> None:
        super().__init__(message)


class ConflictError(Exception):
    """Raised when a unique value or a one-shot state was already taken.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field whose value conflicts.
        value: The conflicting value.
    """

    def __init__(
        self, resource: str, field: str, value: str | None = None, message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


class ConsistencyError(Exception):
    """Raised when the database refuses a write the service expected to succeed.

    The message is for logs only; HTTP handlers answer with a generic
    retry hint so no internal detail leaks to the caller.
    """
