"""SQL statements for treatment units, treatments, vocabularies and roles.

Each function returns the statement text together with its bound values,
or ``None`` when a required argument is missing, so callers can report the
request as malformed instead of sending an incomplete statement.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import psycopg2.extras
from psycopg2 import sql

from restoration.db import database

if TYPE_CHECKING:
    from collections.abc import Sequence

    from restoration.db import models as db_models


def get_treatment_feature_types_sql() -> database.SQLStatement:
    return database.SQLStatement(
        """
        SELECT feature_type_id, name
        FROM feature_type
        ORDER BY name;
        """
    )


def get_treatment_types_sql() -> database.SQLStatement:
    return database.SQLStatement(
        """
        SELECT treatment_type_id, name
        FROM treatment_type
        ORDER BY name;
        """
    )


def post_treatment_unit_sql(
    project_id: int | None,
    feature: db_models.ValidTreatmentFeature,
) -> database.SQLStatement | None:
    """Insert one treatment unit and return its id.

    The whole feature is stored as a one element GeoJSON array; its geometry
    is also stored as a 2D WGS84 geography.
    """
    if project_id is None:
        return None

    properties = feature.properties
    geometry = feature.geometry
    return database.SQLStatement(
        """
        INSERT INTO treatment_unit (
            project_id,
            feature_type_id,
            name,
            width,
            length,
            area,
            reconnaissance_conducted,
            comments,
            geojson,
            geography
        ) VALUES (
            %(project_id)s,
            %(feature_type_id)s,
            %(name)s,
            %(width)s,
            %(length)s,
            %(area)s,
            %(reconnaissance_conducted)s,
            %(comments)s,
            %(geojson)s,
            public.geography(
                public.ST_Force2D(
                    public.ST_SetSRID(
                        public.ST_GeomFromGeoJSON(%(geometry)s), 4326
                    )
                )
            )
        )
        RETURNING treatment_unit_id;
        """,
        {
            "project_id": project_id,
            "feature_type_id": properties.feature_type_id,
            "name": properties.unit_name,
            "width": properties.width,
            "length": properties.length,
            "area": properties.area,
            "reconnaissance_conducted": properties.reconnaissance_conducted,
            "comments": properties.comments,
            "geojson": psycopg2.extras.Json([feature.feature]),
            "geometry": json.dumps(geometry) if geometry is not None else None,
        },
    )


def post_treatment_data_sql(
    treatment_unit_id: int | None,
    year: int | None,
    implemented: str | None,
) -> database.SQLStatement | None:
    if treatment_unit_id is None or year is None:
        return None

    return database.SQLStatement(
        """
        INSERT INTO treatment (treatment_unit_id, year, implemented)
        VALUES (%(treatment_unit_id)s, %(year)s, %(implemented)s)
        RETURNING treatment_id;
        """,
        {
            "treatment_unit_id": treatment_unit_id,
            "year": year,
            "implemented": implemented,
        },
    )


def post_treatment_type_sql(
    treatment_id: int | None,
    treatment_type_id: int | None,
) -> database.SQLStatement | None:
    if treatment_id is None or treatment_type_id is None:
        return None

    return database.SQLStatement(
        """
        INSERT INTO treatment_treatment_type (treatment_id, treatment_type_id)
        VALUES (%(treatment_id)s, %(treatment_type_id)s)
        RETURNING treatment_treatment_type_id;
        """,
        {"treatment_id": treatment_id, "treatment_type_id": treatment_type_id},
    )


def get_treatment_unit_exist_sql(
    project_id: int | None,
    feature_type_id: int | None,
    name: str | None,
) -> database.SQLStatement | None:
    if project_id is None or feature_type_id is None or not name:
        return None

    return database.SQLStatement(
        """
        SELECT treatment_unit_id
        FROM treatment_unit
        WHERE project_id = %(project_id)s
          AND feature_type_id = %(feature_type_id)s
          AND name = %(name)s;
        """,
        {
            "project_id": project_id,
            "feature_type_id": feature_type_id,
            "name": name,
        },
    )


def get_treatment_data_year_exist_sql(
    treatment_unit_id: int | None,
    year: int | None,
) -> database.SQLStatement | None:
    if treatment_unit_id is None or year is None:
        return None

    return database.SQLStatement(
        """
        SELECT treatment_id
        FROM treatment
        WHERE treatment_unit_id = %(treatment_unit_id)s
          AND year = %(year)s;
        """,
        {"treatment_unit_id": treatment_unit_id, "year": year},
    )


def get_project_treatments_years_sql(
    project_id: int | None,
) -> database.SQLStatement | None:
    if project_id is None:
        return None

    return database.SQLStatement(
        """
        SELECT DISTINCT t.year
        FROM treatment t
        JOIN treatment_unit tu
          ON tu.treatment_unit_id = t.treatment_unit_id
        WHERE tu.project_id = %(project_id)s
        ORDER BY t.year;
        """,
        {"project_id": project_id},
    )


def _delete_treatments_sql(unit_filter: str) -> str:
    return f"""
        DELETE FROM treatment_treatment_type
        WHERE treatment_id IN (
            SELECT t.treatment_id
            FROM treatment t
            JOIN treatment_unit tu
              ON tu.treatment_unit_id = t.treatment_unit_id
            WHERE {unit_filter}
        );
        DELETE FROM treatment
        WHERE treatment_unit_id IN (
            SELECT tu.treatment_unit_id
            FROM treatment_unit tu
            WHERE {unit_filter}
        );
        DELETE FROM treatment_unit tu
        WHERE {unit_filter};
        """


def delete_project_treatment_unit_sql(
    project_id: int,
    treatment_unit_id: int,
) -> database.SQLStatement:
    return database.SQLStatement(
        _delete_treatments_sql(
            "tu.project_id = %(project_id)s"
            " AND tu.treatment_unit_id = %(treatment_unit_id)s"
        ),
        {"project_id": project_id, "treatment_unit_id": treatment_unit_id},
    )


def delete_project_treatments_sql(project_id: int) -> database.SQLStatement:
    return database.SQLStatement(
        _delete_treatments_sql("tu.project_id = %(project_id)s"),
        {"project_id": project_id},
    )


def get_treatments_by_criteria_query(
    project_id: int,
    years: Sequence[int] | None = None,
) -> database.ComposedStatement:
    """Compose the treatment listing query for a project.

    Produces one row per (treatment unit, treatment year) with the names of
    that year's treatment types joined into ``treatment_name``. Units without
    treatments produce a single row with NULL treatment columns, unless a
    years filter is given.

    Args:
        project_id: Project whose treatment units are listed.
        years: Only keep treatments of these years.

    Returns:
        Composed query and its bound values.
    """
    conditions = [sql.SQL("tu.project_id = {}").format(sql.Placeholder("project_id"))]
    values: dict[str, object] = {"project_id": project_id}
    if years:
        conditions.append(
            sql.SQL("t.year = ANY({})").format(sql.Placeholder("years"))
        )
        values["years"] = list(years)

    query = sql.SQL(
        """
        SELECT
            tu.name AS id,
            ft.name AS type,
            tu.width,
            tu.length,
            tu.area,
            t.year AS treatment_year,
            t.implemented,
            string_agg(tt.name, ', ' ORDER BY tt.name) AS treatment_name,
            tu.reconnaissance_conducted,
            tu.comments,
            tu.geojson
        FROM treatment_unit tu
        LEFT JOIN feature_type ft
          ON ft.feature_type_id = tu.feature_type_id
        LEFT JOIN treatment t
          ON t.treatment_unit_id = tu.treatment_unit_id
        LEFT JOIN treatment_treatment_type ttt
          ON ttt.treatment_id = t.treatment_id
        LEFT JOIN treatment_type tt
          ON tt.treatment_type_id = ttt.treatment_type_id
        WHERE {conditions}
        GROUP BY
            tu.treatment_unit_id,
            ft.feature_type_id,
            t.treatment_id
        ORDER BY tu.treatment_unit_id, t.year;
        """
    ).format(conditions=sql.SQL(" AND ").join(conditions))
    return database.ComposedStatement(query, values)


def get_system_user_roles_sql(
    system_user_id: int | None,
) -> database.SQLStatement | None:
    if system_user_id is None:
        return None

    return database.SQLStatement(
        """
        SELECT sr.name
        FROM system_user_role sur
        JOIN system_role sr
          ON sr.system_role_id = sur.system_role_id
        WHERE sur.system_user_id = %(system_user_id)s;
        """,
        {"system_user_id": system_user_id},
    )
