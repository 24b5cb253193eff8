"""Tests for treatment feature validation and the treatment list view."""

from __future__ import annotations

from typing import Any

import pydantic
import pytest

from restoration.db import models as db_models

CONTEXT = {
    "feature_types": [
        db_models.FeatureType(1, "Other"),
        db_models.FeatureType(2, "Riparian"),
    ],
    "treatment_types": [
        db_models.TreatmentType(3, "Seeding"),
        db_models.TreatmentType(4, "Tree Felling"),
    ],
}


def _properties(**overrides: Any) -> dict[str, Any]:
    properties = {
        "TU_ID": 1,
        "Year": "2020",
        "Fe_Type": "Other",
        "Width_m": 240,
        "Length_m": 3498,
        "Recce": "N",
        "Treatments": "Seeding",
        "Implement": "Y",
        "Comments": "south slope",
    }
    properties.update(overrides)
    return properties


def _validate(properties: dict[str, Any]) -> db_models.TreatmentFeatureProperties:
    return db_models.TreatmentFeatureProperties.model_validate(
        properties, context=CONTEXT
    )


def test_feature_properties_valid() -> None:
    props = _validate(_properties())
    assert props.unit_name == "1"
    assert props.year == 2020
    assert props.feature_type_id == 1
    assert props.area == 839520.0
    assert props.reconnaissance_conducted == "no"
    assert props.implemented == "yes"
    assert props.treatment_type_ids == [3]
    assert props.comments == "south slope"


def test_feature_properties_keep_given_area() -> None:
    assert _validate(_properties(Area_m2=12.5)).area == 12.5


def test_feature_properties_resolve_names_case_insensitively() -> None:
    props = _validate(
        _properties(Fe_Type="riparian", Treatments="tree felling; SEEDING, Seeding")
    )
    assert props.feature_type_id == 2
    assert props.treatment_type_ids == [4, 3]


def test_feature_properties_accept_treatment_list() -> None:
    assert _validate(_properties(Treatments=["Seeding"])).treatment_type_ids == [3]


@pytest.mark.parametrize(
    ("recce", "expected"),
    [("Y", "yes"), ("NA", "not applicable"), ("", None), (None, None)],
)
def test_reconnaissance_values(recce: str | None, expected: str | None) -> None:
    assert _validate(_properties(Recce=recce)).reconnaissance_conducted == expected


@pytest.mark.parametrize(
    ("overrides", "field"),
    [
        ({"Fe_Type": "Wetland"}, "Fe_Type"),
        ({"Treatments": "Burning"}, "Treatments"),
        ({"Treatments": " ; "}, "Treatments"),
        ({"Year": "last year"}, "Year"),
        ({"Year": 1850}, "Year"),
        ({"Width_m": -1}, "Width_m"),
        ({"Implement": "maybe"}, "Implement"),
        ({"TU_ID": ""}, "TU_ID"),
    ],
)
def test_feature_properties_invalid(overrides: dict[str, Any], field: str) -> None:
    with pytest.raises(pydantic.ValidationError) as excinfo:
        _validate(_properties(**overrides))
    assert [error["loc"][0] for error in excinfo.value.errors()] == [field]


def test_feature_properties_need_vocabularies() -> None:
    with pytest.raises(pydantic.ValidationError):
        db_models.TreatmentFeatureProperties.model_validate(_properties())


def test_valid_feature_geometry() -> None:
    feature = {"type": "Feature", "geometry": {"type": "Point"}, "properties": {}}
    valid = db_models.ValidTreatmentFeature(feature, _validate(_properties()))
    assert valid.geometry == {"type": "Point"}


def test_treatment_list_groups_rows_by_unit() -> None:
    rows = [
        {
            "id": "1",
            "type": "Other",
            "width": 240,
            "length": 3498,
            "area": 839520,
            "treatment_year": 2020,
            "implemented": "yes",
            "treatment_name": "Seeding",
            "reconnaissance_conducted": "no",
            "comments": None,
            "geojson": [{}],
        },
        {
            "id": "1",
            "type": "Other",
            "width": 240,
            "length": 3498,
            "area": 839520,
            "treatment_year": 2021,
            "implemented": "no",
            "treatment_name": "Tree Felling",
            "reconnaissance_conducted": "yes",
            "comments": None,
            "geojson": [{}],
        },
    ]

    response = db_models.TreatmentListView.from_rows(rows).to_response()

    assert response == {
        "treatmentList": [
            {
                "id": "1",
                "type": "Other",
                "width": 240,
                "length": 3498,
                "area": 839520,
                "geometry": {},
                "reconnaissance_conducted": "no",
                "comments": None,
                "treatments": [
                    {
                        "treatment_year": "2020",
                        "treatment_name": "Seeding",
                        "implemented": "yes",
                    },
                    {
                        "treatment_year": "2021",
                        "treatment_name": "Tree Felling",
                        "implemented": "no",
                    },
                ],
            }
        ]
    }


def test_treatment_list_keeps_units_of_different_types_apart() -> None:
    rows = [
        {"id": "A", "type": "Other", "treatment_year": 2020, "geojson": None},
        {"id": "A", "type": "Riparian", "treatment_year": None, "geojson": None},
    ]
    units = db_models.TreatmentListView.from_rows(rows).treatment_list
    assert [(unit.id, unit.type) for unit in units] == [
        ("A", "Other"),
        ("A", "Riparian"),
    ]
    assert len(units[0].treatments) == 1
    assert units[1].treatments == []
    assert units[1].geometry is None


def test_treatment_list_empty() -> None:
    assert db_models.TreatmentListView.from_rows([]).to_response() == {
        "treatmentList": []
    }
