"""Zipped shapefile to GeoJSON conversion using ogr2ogr.

A treatment upload is a zip bundle holding one or more shapefiles. Each
``.shp`` member is converted with ogr2ogr into a GeoJSON FeatureCollection
reprojected to EPSG:4326 (WGS84), and the features of all members are
returned as one list, in archive order.

Example:
    Read the features of an uploaded bundle:
        >>> from restoration.core.config import get_settings
        >>> from restoration.services import shapefile

        >>> with open("treatments.zip", "rb") as handle:
        ...     features = shapefile.parse_shapefile(
        ...         handle.read(), get_settings()
        ...     )
        >>> features[0]["properties"]["TU_ID"]

    The ogr2ogr command executed for each member:
        $ ogr2ogr -f GeoJSON -t_srs EPSG:4326 units.geojson units.shp
"""

from __future__ import annotations

import io
import json
import logging
import pathlib
import subprocess
import tempfile
import zipfile
from typing import TYPE_CHECKING, Any

from restoration.core import errors

if TYPE_CHECKING:
    from collections.abc import Iterable

    from restoration.core import config

logger = logging.getLogger(__name__)

Feature = dict[str, Any]


class CommandError(RuntimeError):
    """Raised when an OGR subprocess command exits with a non-zero status.

    The message is the command's stderr output.
    """


def run_command(
    command: Iterable[str | pathlib.Path],
    workdir: pathlib.Path | None = None,
) -> None:
    """Execute a command and raise on non-zero exit.

    Args:
        command: Iterable arguments to execute (e.g., ["ogr2ogr", "-f", ...]).
        workdir: Optional working directory for the command execution.

    Raises:
        CommandError: if the command exits with a non-zero status code.
    """
    arguments = [str(part) for part in command]
    logger.debug("running %s", " ".join(arguments))
    result = subprocess.run(
        arguments,
        cwd=workdir,
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        raise CommandError(result.stderr.strip() or "Unknown command failure")


def _extract_bundle(buffer: bytes, target_dir: pathlib.Path) -> list[pathlib.Path]:
    """Unpack the zip and return its shapefiles in archive order.

    Raises:
        BadRequest: If the buffer is not a zip archive or holds no shapefile.
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(buffer))
    except zipfile.BadZipFile as exc:
        raise errors.BadRequest("Uploaded file is not a zip archive") from exc

    shapefiles: list[pathlib.Path] = []
    with archive:
        for member in archive.infolist():
            member_path = pathlib.PurePosixPath(member.filename)
            if member.is_dir() or member_path.name.startswith("."):
                continue
            if member_path.is_absolute() or ".." in member_path.parts:
                raise errors.BadRequest(f"Invalid path in archive: {member.filename}")
            archive.extract(member, target_dir)
            if member_path.suffix.lower() == ".shp":
                shapefiles.append(target_dir / member_path)

    if not shapefiles:
        raise errors.BadRequest("Archive does not contain a shapefile")
    return shapefiles


def convert_to_geojson(shp_path: pathlib.Path) -> list[Feature]:
    """Convert one shapefile to GeoJSON features in EPSG:4326.

    Raises:
        CommandError: If ogr2ogr cannot read the shapefile.
    """
    output = shp_path.with_suffix(".geojson")
    run_command(
        (
            "ogr2ogr",
            "-f",
            "GeoJSON",
            "-t_srs",
            "EPSG:4326",
            output,
            shp_path,
        ),
        workdir=shp_path.parent,
    )
    collection = json.loads(output.read_text(encoding="utf-8"))
    return list(collection.get("features") or [])


def parse_shapefile(buffer: bytes, settings: config.Settings) -> list[Feature]:
    """Read every feature of a zipped shapefile bundle.

    Args:
        buffer: Raw bytes of the uploaded zip.
        settings: Supplies the scratch directory the bundle is unpacked to.

    Returns:
        GeoJSON features of all shapefiles in the bundle.

    Raises:
        BadRequest: If the upload is empty, not a zip, or has no shapefile.
        CommandError: If ogr2ogr fails on one of the shapefiles.
    """
    if not buffer:
        raise errors.BadRequest("Uploaded file is empty")

    settings.ensure_directories()
    with tempfile.TemporaryDirectory(dir=settings.storage_dir) as scratch:
        features: list[Feature] = []
        for shp_path in _extract_bundle(buffer, pathlib.Path(scratch)):
            features.extend(convert_to_geojson(shp_path))

    logger.info("read %s features from shapefile bundle", len(features))
    return features
