from __future__ import annotations

import logging
from typing import Any

import jwt

from ..catalog.models import RoleProfile
from ..errors import CatalogError, ErrorKind
from ..store.client import Store
from .config import DEFAULT_AUTH_CONFIG, AuthConfig

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def extract_bearer_token(authorization: str | None) -> str:
    """Return the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise CatalogError(
            ErrorKind.unauthorized, "Missing or invalid Authorization header"
        )
    token = authorization[len(BEARER_PREFIX):].strip()
    if not token:
        raise CatalogError(ErrorKind.unauthorized, "Missing or invalid Authorization header")
    return token


def decode_subject(token: str, config: AuthConfig = DEFAULT_AUTH_CONFIG) -> str:
    """Return the ``sub`` claim of a bearer token."""
    try:
        if config.jwt_secret:
            claims = jwt.decode(
                token,
                config.jwt_secret,
                algorithms=["HS256"],
                options={"verify_aud": False},
            )
        else:
            claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError as exc:
        logger.warning("JWT decode failed: %s", type(exc).__name__)
        raise CatalogError(ErrorKind.unauthorized, "Invalid token") from exc

    subject = claims.get("sub")
    if not subject:
        raise CatalogError(ErrorKind.unauthorized, "Invalid token")
    return str(subject)


def _profile_from_row(row: dict[str, Any]) -> RoleProfile | None:
    role = row.get("role")
    if isinstance(role, list):
        role = role[0] if role else None
    if not role:
        return None
    return RoleProfile(
        app_user_id=row["id"],
        email=row.get("email"),
        role_id=role.get("id"),
        role_type=role.get("role_type"),
    )


def resolve_role_profile(
    store: Store, auth_subject: str, config: AuthConfig = DEFAULT_AUTH_CONFIG
) -> RoleProfile | None:
    """Resolve an auth subject to the caller's application profile and role.

    Joins the users table to its role record; ``None`` when no user (or no
    role) is linked to the subject.
    """
    request = (
        store.client.table(config.users_table)
        .select("id, email, role ( id, role_type )")
        .eq(config.subject_column, auth_subject)
        .limit(1)
    )
    response = store.run(request.execute, label="Role lookup")
    rows = response.data or []
    if not rows:
        return None
    return _profile_from_row(rows[0])
