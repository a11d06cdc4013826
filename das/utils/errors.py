"""Standardised API error responses.

Usage
-----
    from das.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Action not found")
    return api_error(E.VALIDATION_REQUIRED, "routing is required")

Service exceptions (``das.core.exceptions``) are translated by the handlers
that ``register_error_handlers(app)`` installs, so most views never call
``api_error`` directly.
"""

from __future__ import annotations

import logging

from flask import g, jsonify, request
from sqlalchemy.exc import OperationalError

from das.core.exceptions import (
    AuthError,
    ConflictError,
    DASError,
    ForbiddenError,
    InvalidReferenceError,
    InvalidTransitionError,
    NotFoundError,
    StoreUnavailableError,
    TransactionError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    INVALID_REFERENCE = "ERR_INVALID_REFERENCE"

    # Auth – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Server – HTTP 500 / 503
    TRANSACTION = "ERR_TRANSACTION"
    STORE_UNAVAILABLE = "ERR_STORE_UNAVAILABLE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.INVALID_REFERENCE: 400,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.TRANSACTION: 500,
    E.STORE_UNAVAILABLE: 503,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for the caller.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field-level validation errors).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def _code_for(error: DASError) -> str:
    if isinstance(error, InvalidReferenceError):
        return E.INVALID_REFERENCE
    if isinstance(error, ValidationError):
        return E.VALIDATION_INVALID
    if isinstance(error, AuthError):
        return E.UNAUTHENTICATED
    if isinstance(error, ForbiddenError):
        return E.FORBIDDEN
    if isinstance(error, NotFoundError):
        return E.NOT_FOUND
    if isinstance(error, ConflictError):
        return E.CONFLICT_DUPLICATE
    if isinstance(error, InvalidTransitionError):
        return E.CONFLICT_STATE
    if isinstance(error, TransactionError):
        return E.TRANSACTION
    if isinstance(error, StoreUnavailableError):
        return E.STORE_UNAVAILABLE
    return E.INTERNAL


def register_error_handlers(app):
    """Translate service exceptions and framework errors into JSON bodies."""

    @app.errorhandler(DASError)
    def _handle_das_error(error: DASError):
        status = error.status_code
        if status >= 500:
            logger.error(
                "%s on %s %s: %s",
                type(error).__name__, request.method, request.path, error,
                exc_info=error.__cause__ or error,
                extra={"request_id": getattr(g, "request_id", None)},
            )
        details = getattr(error, "details", None)
        return api_error(_code_for(error), str(error), status=status, details=details)

    @app.errorhandler(OperationalError)
    def _handle_store_down(error: OperationalError):
        logger.error(
            "Datastore error on %s %s", request.method, request.path,
            exc_info=error,
            extra={"request_id": getattr(g, "request_id", None)},
        )
        return api_error(E.STORE_UNAVAILABLE, str(StoreUnavailableError()), status=503)

    @app.errorhandler(404)
    def _not_found(e):
        return jsonify({"error": "Not found", "path": request.path}), 404

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(429)
    def _rate_limited(e):
        return jsonify({"error": "Too many requests", "retry_after": e.description}), 429

    @app.errorhandler(500)
    def _server_error(e):
        original = getattr(e, "original_exception", None) or e
        logger.error(
            "Unhandled error on %s %s", request.method, request.path,
            exc_info=original,
            extra={"request_id": getattr(g, "request_id", None)},
        )
        return jsonify({"error": "Internal server error"}), 500
