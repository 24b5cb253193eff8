"""Project treatment endpoints.

Treatment units are loaded from a zipped shapefile, listed with their
yearly treatments, and deleted per unit or for the whole project. Every
endpoint runs its queries in one transaction bound to the caller's identity.

Example:
    Upload a bundle, then list the 2020 treatments:
        >>> with open("treatments.zip", "rb") as handle:
        ...     response = client.post(
        ...         "/api/project/1/treatments/upload",
        ...         files={"file": ("treatments.zip", handle)},
        ...     )
        >>> response.json()
        >>> # Returns: {"treatment_unit_ids": [12, 13]}

        >>> response = client.get("/api/project/1/treatments?years=2020")
        >>> response.json()["treatmentList"][0]["treatments"]
        >>> # Returns: [{"treatment_year": "2020",
        >>> #            "treatment_name": "Seeding", "implemented": "yes"}]
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

import fastapi

from restoration.api import dependencies
from restoration.core import config, errors
from restoration.db import database
from restoration.services import shapefile, treatments

logger = logging.getLogger(__name__)

router = fastapi.APIRouter(
    prefix="/api/project/{project_id}/treatments",
    tags=["treatments"],
)


def _read_upload(file: fastapi.UploadFile, max_size: int) -> bytes:
    """Read an uploaded file into memory with size validation.

    Raises:
        HTTPException: If the file exceeds the maximum size limit.
    """
    buffer = bytearray()
    for chunk in iter(lambda: file.file.read(1024 * 1024), b""):
        buffer.extend(chunk)
        if len(buffer) > max_size:
            raise fastapi.HTTPException(
                status_code=413,
                detail="Upload too large",
            )
    return bytes(buffer)


@router.get("")
def get_treatments(
    project_id: int,
    years: list[int] | None = fastapi.Query(default=None),  # noqa: B008
    connection: database.DBConnection = fastapi.Depends(  # noqa: B008
        dependencies.get_db_connection
    ),
) -> dict[str, Any]:
    """List a project's treatment units with their yearly treatments.

    Args:
        project_id: Project to list.
        years: Optional repeated query parameter restricting the years.
        connection: Request connection (injected via FastAPI Depends).

    Returns:
        ``{"treatmentList": [...]}`` with one entry per treatment unit.
    """
    with database.transaction(connection):
        view = treatments.TreatmentService(connection).get_treatments_by_criteria(
            project_id,
            treatments.TreatmentSearchCriteria(years=years),
        )
    return view.to_response()


@router.get("/years")
def get_treatment_years(
    project_id: int,
    connection: database.DBConnection = fastapi.Depends(  # noqa: B008
        dependencies.get_db_connection
    ),
) -> list[dict[str, Any]]:
    with database.transaction(connection):
        return treatments.TreatmentService(connection).get_project_treatments_years(
            project_id
        )


@router.post("/upload")
def upload_treatments(
    project_id: int,
    file: fastapi.UploadFile,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    connection: database.DBConnection = fastapi.Depends(  # noqa: B008
        dependencies.get_db_connection
    ),
) -> dict[str, list[int]]:
    """Load treatment units from a zipped shapefile.

    The bundle is converted before the connection is opened. If any feature
    fails validation nothing is written and the response is a 400 listing
    the messages per treatment unit.

    Args:
        project_id: Project the treatment units belong to.
        file: Zip bundle holding the shapefile(s).
        settings: Application settings (injected via FastAPI Depends).
        connection: Request connection (injected via FastAPI Depends).

    Returns:
        Ids of the treatment units that were added or received a new
        yearly treatment.

    Raises:
        HTTPException: 413 if the upload exceeds the maximum size.
        BadRequest: If the bundle is unreadable or features are invalid.
    """
    buffer = _read_upload(file, settings.max_upload_size_bytes)
    features = shapefile.parse_shapefile(buffer, settings)

    with database.transaction(connection):
        service = treatments.TreatmentService(connection)
        parsed = service.parse_features(features)
        if parsed.errors:
            raise errors.BadRequest(
                "Failed to parse treatment features",
                [dataclasses.asdict(item) for item in parsed.errors],
            )
        unit_ids = service.insert_all_project_treatment_units(project_id, parsed.data)

    logger.info(
        "project %s: uploaded %s as %s features",
        project_id,
        file.filename,
        len(features),
    )
    return {"treatment_unit_ids": unit_ids}


@router.delete("")
def delete_treatments(
    project_id: int,
    connection: database.DBConnection = fastapi.Depends(  # noqa: B008
        dependencies.get_db_connection
    ),
) -> None:
    with database.transaction(connection):
        treatments.TreatmentService(connection).delete_treatments(project_id)


@router.delete("/unit/{treatment_unit_id}")
def delete_treatment_unit(
    project_id: int,
    treatment_unit_id: int,
    connection: database.DBConnection = fastapi.Depends(  # noqa: B008
        dependencies.get_db_connection
    ),
) -> None:
    with database.transaction(connection):
        treatments.TreatmentService(connection).delete_treatment_unit(
            project_id, treatment_unit_id
        )
