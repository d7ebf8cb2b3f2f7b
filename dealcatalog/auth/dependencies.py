from __future__ import annotations

import logging

from fastapi import Depends, Header, Request

from ..catalog.models import IdentityContext, RoleProfile
from ..errors import CatalogError, ErrorKind
from ..store.client import Store, get_store
from .config import DEFAULT_AUTH_CONFIG
from .roles import decode_subject, extract_bearer_token, resolve_role_profile

logger = logging.getLogger(__name__)


def verify_admin(
    request: Request,
    authorization: str | None = Header(default=None),
    store: Store = Depends(get_store),
) -> IdentityContext:
    """Raise 401 for a missing/undecodable token, 403 for a non-admin caller.

    The resolved identity is stored on ``request.state.identity``.
    """
    subject = decode_subject(extract_bearer_token(authorization))
    profile = resolve_role_profile(store, subject)

    if profile is None or profile.role_type != DEFAULT_AUTH_CONFIG.admin_role:
        logger.warning(
            "User %s (auth id %s) is not an admin; role=%s",
            profile.email if profile else "<no profile>",
            subject,
            profile.role_type if profile else None,
        )
        raise CatalogError(ErrorKind.forbidden, "User does not have Admin privileges")

    identity = IdentityContext(
        auth_id=subject,
        app_id=profile.app_user_id,
        email=profile.email,
        role=profile.role_type,
    )
    request.state.identity = identity
    return identity


def current_identity(request: Request) -> IdentityContext:
    """Return the identity attached by ``verify_admin`` without resolving it again."""
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise CatalogError(ErrorKind.unauthorized, "Not authenticated")
    return identity


def require_profile(
    authorization: str | None = Header(default=None),
    store: Store = Depends(get_store),
) -> RoleProfile:
    """Resolve the caller's own profile; 404 when the token maps to no profile."""
    subject = decode_subject(extract_bearer_token(authorization))
    profile = resolve_role_profile(store, subject)
    if profile is None:
        raise CatalogError(ErrorKind.not_found, "User profile not found")
    return profile
