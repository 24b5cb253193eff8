"""Treatment unit reconciliation and treatment queries for a project.

Shapefile features become treatment units (one per project, feature type
and unit name), yearly treatments (one per unit and year) and the links
between a treatment and its treatment types. Loading the same features
twice adds nothing the second time: existing units are reused and years
that already have a treatment are skipped.

Example:
    Validate and load uploaded features inside one transaction:
        >>> with database.transaction(connection):
        ...     service = TreatmentService(connection)
        ...     parsed = service.parse_features(features)
        ...     if not parsed.errors:
        ...         unit_ids = service.insert_all_project_treatment_units(
        ...             project_id, parsed.data
        ...         )
"""

from __future__ import annotations

import dataclasses
import functools
import logging
from typing import TYPE_CHECKING, Any

import pydantic

from restoration.core import errors
from restoration.db import models as db_models
from restoration.db import queries

if TYPE_CHECKING:
    from collections.abc import Sequence

    from restoration.db import database

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class TreatmentSearchCriteria:
    years: Sequence[int | str] | int | str | None = None


class DBService:
    """Base class for services that issue queries through one connection."""

    def __init__(self, connection: database.ConnectionProtocol) -> None:
        self.connection = connection


def _format_validation_errors(error: pydantic.ValidationError) -> list[str]:
    messages = []
    for item in error.errors():
        field = str(item["loc"][0]) if item["loc"] else "properties"
        messages.append(f"{field} - {item['msg']}")
    return messages


def _feature_unit_id(feature: dict[str, Any]) -> str:
    properties = feature.get("properties") or {}
    unit_id = properties.get("TU_ID")
    return str(unit_id) if unit_id else db_models.INVALID_TU_ID


class TreatmentService(DBService):
    def _rows(
        self,
        statement: database.SQLStatement | None,
        build_error: str,
    ) -> list[dict[str, Any]]:
        if statement is None:
            raise errors.BadRequest(build_error)
        return self.connection.sql(statement).rows

    def _first_row(
        self,
        statement: database.SQLStatement | None,
        build_error: str,
        empty_error: str,
    ) -> dict[str, Any]:
        rows = self._rows(statement, build_error)
        if not rows:
            raise errors.BadRequest(empty_error)
        return rows[0]

    def get_all_treatment_feature_types(self) -> list[db_models.FeatureType]:
        rows = self._rows(
            queries.get_treatment_feature_types_sql(),
            "Failed to build SQL get statement",
        )
        return [
            db_models.FeatureType(int(row["feature_type_id"]), str(row["name"]))
            for row in rows
        ]

    def get_all_treatment_types(self) -> list[db_models.TreatmentType]:
        rows = self._rows(
            queries.get_treatment_types_sql(),
            "Failed to build SQL get statement",
        )
        return [
            db_models.TreatmentType(int(row["treatment_type_id"]), str(row["name"]))
            for row in rows
        ]

    def parse_features(
        self,
        features: Sequence[dict[str, Any]],
    ) -> db_models.ParseFeaturesResult:
        """Validate feature properties against the reference vocabularies.

        The vocabularies are read once. A feature that fails validation does
        not stop the batch: its messages are collected under its ``TU_ID``
        (or ``Invalid TU_ID`` when that is missing) and the remaining
        features are still validated.

        Args:
            features: GeoJSON features read from a shapefile.

        Returns:
            Valid features, in input order, and per-feature error messages.
        """
        context = {
            "feature_types": self.get_all_treatment_feature_types(),
            "treatment_types": self.get_all_treatment_types(),
        }

        result = db_models.ParseFeaturesResult(errors=[], data=[])
        for feature in features:
            try:
                properties = db_models.TreatmentFeatureProperties.model_validate(
                    feature.get("properties") or {},
                    context=context,
                )
            except pydantic.ValidationError as exc:
                result.errors.append(
                    db_models.FeatureErrors(
                        treatment_unit_id=_feature_unit_id(feature),
                        errors=_format_validation_errors(exc),
                    )
                )
                continue

            result.data.append(db_models.ValidTreatmentFeature(feature, properties))

        if result.errors:
            logger.info(
                "%s of %s treatment features failed validation",
                len(result.errors),
                len(features),
            )
        return result

    def insert_treatment_unit(
        self,
        project_id: int,
        feature: db_models.ValidTreatmentFeature,
    ) -> db_models.TreatmentUnitRow:
        row = self._first_row(
            queries.post_treatment_unit_sql(project_id, feature),
            "Failed to build SQL insert statement",
            "Failed to insert treatment unit data",
        )
        return db_models.TreatmentUnitRow(treatment_unit_id=int(row["treatment_unit_id"]))

    def insert_treatment_data(
        self,
        treatment_unit_id: int,
        year: int,
        implemented: str | None,
    ) -> db_models.TreatmentRow:
        row = self._first_row(
            queries.post_treatment_data_sql(treatment_unit_id, year, implemented),
            "Failed to build SQL insert statement",
            "Failed to insert treatment data",
        )
        return db_models.TreatmentRow(treatment_id=int(row["treatment_id"]))

    def insert_treatment_type(
        self,
        treatment_id: int,
        treatment_type_id: int,
    ) -> db_models.TreatmentTypeLinkRow:
        row = self._first_row(
            queries.post_treatment_type_sql(treatment_id, treatment_type_id),
            "Failed to build SQL insert statement",
            "Failed to insert treatment unit type data",
        )
        return db_models.TreatmentTypeLinkRow(
            treatment_treatment_type_id=int(row["treatment_treatment_type_id"])
        )

    def insert_all_treatment_types(
        self,
        treatment_id: int,
        properties: db_models.TreatmentFeatureProperties,
    ) -> None:
        for treatment_type_id in properties.treatment_type_ids:
            self.insert_treatment_type(treatment_id, treatment_type_id)

    def insert_treatment_data_and_treatment_types(
        self,
        treatment_unit_id: int,
        properties: db_models.TreatmentFeatureProperties,
    ) -> None:
        treatment = self.insert_treatment_data(
            treatment_unit_id,
            properties.year,
            properties.implemented,
        )
        self.insert_all_treatment_types(treatment["treatment_id"], properties)

    def get_treatment_unit_exist(
        self,
        project_id: int,
        feature_type_id: int,
        treatment_unit_name: str,
    ) -> db_models.TreatmentUnitRow | None:
        rows = self._rows(
            queries.get_treatment_unit_exist_sql(
                project_id, feature_type_id, treatment_unit_name
            ),
            "Failed to build SQL get statement",
        )
        if not rows:
            return None
        return db_models.TreatmentUnitRow(
            treatment_unit_id=int(rows[0]["treatment_unit_id"])
        )

    def get_treatment_data_year_exist(
        self,
        treatment_unit_id: int,
        year: int,
    ) -> db_models.TreatmentRow | None:
        rows = self._rows(
            queries.get_treatment_data_year_exist_sql(treatment_unit_id, year),
            "Failed to build SQL get statement",
        )
        if not rows:
            return None
        return db_models.TreatmentRow(treatment_id=int(rows[0]["treatment_id"]))

    def _reconcile_feature(
        self,
        project_id: int,
        touched: list[int],
        feature: db_models.ValidTreatmentFeature,
    ) -> list[int]:
        properties = feature.properties
        existing_unit = self.get_treatment_unit_exist(
            project_id,
            properties.feature_type_id,
            properties.unit_name,
        )

        if existing_unit is None:
            unit = self.insert_treatment_unit(project_id, feature)
            self.insert_treatment_data_and_treatment_types(
                unit["treatment_unit_id"], properties
            )
            return [*touched, unit["treatment_unit_id"]]

        unit_id = existing_unit["treatment_unit_id"]
        if self.get_treatment_data_year_exist(unit_id, properties.year) is not None:
            # unit already has a treatment for this year
            return touched

        self.insert_treatment_data_and_treatment_types(unit_id, properties)
        return [*touched, unit_id]

    def insert_all_project_treatment_units(
        self,
        project_id: int,
        features: Sequence[db_models.ValidTreatmentFeature],
    ) -> list[int]:
        """Add the treatment units and yearly treatments that are missing.

        Features are processed strictly one after another: each existence
        check must see the rows inserted for the features before it.

        Args:
            project_id: Project the treatment units belong to.
            features: Validated features, in upload order.

        Returns:
            Ids of the units that were inserted or received a new treatment,
            in feature order.
        """
        touched = functools.reduce(
            functools.partial(self._reconcile_feature, project_id),
            features,
            [],
        )
        logger.info(
            "project %s: %s of %s treatment features added",
            project_id,
            len(touched),
            len(features),
        )
        return touched

    def get_treatments_by_criteria(
        self,
        project_id: int,
        criteria: TreatmentSearchCriteria,
    ) -> db_models.TreatmentListView:
        years = criteria.years
        if years is not None and not isinstance(years, list | tuple):
            years = [years]
        try:
            year_values = [int(year) for year in years] if years else None
        except ValueError as exc:
            raise errors.BadRequest("Invalid treatment year") from exc

        builder = queries.get_treatments_by_criteria_query(project_id, year_values)
        response = self.connection.query_builder_sql(builder)
        return db_models.TreatmentListView.from_rows(response.rows)

    def get_project_treatments_years(self, project_id: int) -> list[dict[str, Any]]:
        return self._rows(
            queries.get_project_treatments_years_sql(project_id),
            "Failed to build SQL get statement",
        )

    def delete_treatment_unit(self, project_id: int, treatment_unit_id: int) -> None:
        self.connection.sql(
            queries.delete_project_treatment_unit_sql(project_id, treatment_unit_id)
        )

    def delete_treatments(self, project_id: int) -> None:
        self.connection.sql(queries.delete_project_treatments_sql(project_id))
