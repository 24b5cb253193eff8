"""FastAPI dependencies shared by the API routers."""

from __future__ import annotations

from collections.abc import Callable

import fastapi

from restoration.core import auth
from restoration.db import database, queries


def get_db_connection(
    token: auth.KeycloakToken = fastapi.Depends(auth.get_keycloak_token),  # noqa: B008
    pool: database.DBPool = fastapi.Depends(database.get_db_pool),  # noqa: B008
) -> database.DBConnection:
    """Resolve a connection bound to the caller's identity.

    The connection is not opened here; each endpoint opens, commits and
    releases it through ``database.transaction``.
    """
    return database.DBConnection(pool, token)


def require_system_roles(
    *roles: auth.SystemRole,
) -> Callable[[database.DBConnection], None]:
    """Build a dependency rejecting callers without one of ``roles``.

    The check runs in its own transaction on a connection of its own, so the
    endpoint's connection is left unopened.

    Raises:
        HTTPException: 403 if the caller holds none of the roles.
    """
    allowed = {role.value for role in roles}

    def check_system_roles(
        connection: database.DBConnection = fastapi.Depends(  # noqa: B008
            get_db_connection, use_cache=False
        ),
    ) -> None:
        with database.transaction(connection):
            statement = queries.get_system_user_roles_sql(connection.system_user_id())
            rows = connection.sql(statement).rows if statement else []
        if not allowed.intersection(str(row["name"]) for row in rows):
            raise fastapi.HTTPException(status_code=403, detail="Access denied")

    return check_system_roles
