"""
JWT Auth Middleware — parses the bearer token into ``g.identity``.

Every ``/api/`` route except the health probe requires an identity; the
decorators below enforce it per view so blueprints read like:

    @bp.route("/reset", methods=["POST"])
    @require_role("Admin")
    def reset():
        identity = g.identity
        ...

Tokens are decoded once per request in ``before_request``.  A missing or
invalid token leaves ``g.identity`` as None and records the reason in
``g.auth_error``; the decorators turn that into AuthError (401).
"""

import functools
import logging
from dataclasses import dataclass

import jwt as pyjwt
from flask import g, request

from das.core.exceptions import AuthError, ForbiddenError
from das.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

ADMIN_ROLE = "Admin"

# Paths that skip JWT parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/health",
)


@dataclass(frozen=True)
class Identity:
    """Caller identity taken from token claims."""
    user_id: str
    role: str
    name: str = ""
    division: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

    @classmethod
    def from_claims(cls, payload: dict) -> "Identity":
        return cls(
            user_id=str(payload["sub"]),
            role=str(payload["role"]),
            name=str(payload.get("name") or ""),
            division=str(payload.get("division") or ""),
        )


def init_jwt_middleware(app):
    """Register JWT parsing as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.identity = None
        g.auth_error = "Authorization bearer token required"

        path = request.path
        if not path.startswith("/api/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]
        try:
            g.identity = Identity.from_claims(decode_access_token(token))
            g.auth_error = None
        except pyjwt.ExpiredSignatureError:
            g.auth_error = "Token expired"
        except pyjwt.InvalidTokenError as exc:
            logger.info("Rejected bearer token: %s", exc,
                        extra={"request_id": getattr(g, "request_id", None)})
            g.auth_error = "Invalid token"


def current_identity() -> Identity:
    """Return the request identity or raise AuthError."""
    identity = getattr(g, "identity", None)
    if identity is None:
        raise AuthError(getattr(g, "auth_error", None) or "Authentication required")
    return identity


def require_identity(f):
    """Decorator: the request must carry a valid bearer token."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        current_identity()
        return f(*args, **kwargs)
    return decorated


def require_role(*roles: str):
    """
    Decorator: the identity must hold one of ``roles``.

    Admin is accepted only when listed explicitly, so admin utilities and
    role-restricted lists state who may call them in one place.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            identity = current_identity()
            if identity.role not in roles:
                logger.warning(
                    "User %s (%s) denied on %s: requires %s",
                    identity.user_id, identity.role, f.__name__, ", ".join(roles),
                )
                raise ForbiddenError(f"Requires role: {', '.join(roles)}")
            return f(*args, **kwargs)
        return decorated
    return decorator
