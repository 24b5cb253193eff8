"""Bearer token decoding and identity field extraction.

Tokens are issued by Keycloak. The API only verifies the signature and
reads the claims it needs to bind a database session to a user: a global
user id, a login identifier, and the identity provider that issued them.
"""

from __future__ import annotations

import enum
from typing import Any

import fastapi
import jwt
from fastapi import security

from restoration.core import config

KeycloakToken = dict[str, Any]


class SystemRole(str, enum.Enum):
    """System-wide roles, named as in the ``system_role`` table."""

    SYSTEM_ADMIN = "System Administrator"
    DATA_ADMINISTRATOR = "Data Administrator"


bearer_scheme = security.HTTPBearer()


def _split_preferred_username(token: KeycloakToken) -> tuple[str, str]:
    preferred_username = str(token.get("preferred_username") or "")
    name, _, domain = preferred_username.partition("@")
    return name, domain


def get_user_guid(token: KeycloakToken) -> str | None:
    """Return the global user id claimed by the token, if any."""
    guid = token.get("idir_user_guid") or token.get("bceid_user_guid")
    if guid:
        return str(guid)
    return _split_preferred_username(token)[0] or None


def get_user_identifier(token: KeycloakToken) -> str | None:
    """Return the login identifier claimed by the token, if any."""
    identifier = (
        token.get("idir_username")
        or token.get("bceid_username")
        or token.get("restoration_system_username")
    )
    return str(identifier) if identifier else None


def get_user_identity_source(token: KeycloakToken) -> str | None:
    """Return the upper-cased identity provider name, if any."""
    source = token.get("identity_provider") or _split_preferred_username(token)[1]
    return str(source).upper() if source else None


def decode_token(raw: str, settings: config.Settings) -> KeycloakToken:
    """Verify a bearer token and return its claims.

    Args:
        raw: Encoded JWT.
        settings: Supplies the verification key, algorithms and audience.

    Returns:
        The decoded claims.

    Raises:
        HTTPException: 401 if the token is expired or otherwise invalid.
    """
    options = {"verify_aud": settings.keycloak_audience is not None}
    try:
        return jwt.decode(
            raw,
            settings.keycloak_public_key,
            algorithms=settings.keycloak_algorithms,
            audience=settings.keycloak_audience,
            options=options,
        )
    except jwt.ExpiredSignatureError as exc:
        raise fastapi.HTTPException(
            status_code=401,
            detail="Access token expired",
        ) from exc
    except jwt.InvalidTokenError as exc:
        raise fastapi.HTTPException(
            status_code=401,
            detail="Invalid access token",
        ) from exc


def get_keycloak_token(
    credentials: security.HTTPAuthorizationCredentials = fastapi.Security(bearer_scheme),  # noqa: B008
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> KeycloakToken:
    """FastAPI dependency returning the caller's verified token claims."""
    return decode_token(credentials.credentials, settings)
