"""Runtime log level endpoint."""

import fastapi

from restoration.api import dependencies
from restoration.core import auth
from restoration.core import logger as app_logger

router = fastapi.APIRouter(prefix="/api/logger", tags=["misc"])

require_log_admin = dependencies.require_system_roles(
    auth.SystemRole.SYSTEM_ADMIN,
    auth.SystemRole.DATA_ADMINISTRATOR,
)


@router.get("", dependencies=[fastapi.Depends(require_log_admin)])
def update_logger_level(level: str) -> dict[str, str]:
    """Set the level of the API's logger.

    Only system administrators and data administrators may call this.

    Args:
        level: One of critical, error, warning, info or debug.

    Raises:
        HTTPException: 400 if the level is unknown, 403 if the caller lacks
            an administrator role.
    """
    try:
        app_logger.set_log_level(level)
    except ValueError as exc:
        raise fastapi.HTTPException(status_code=400, detail=str(exc)) from exc
    return {"level": level.lower()}
