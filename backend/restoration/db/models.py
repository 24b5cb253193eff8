"""Data models for treatment units, treatments and their vocabularies.

Reference vocabularies and reconciliation results are plain dataclasses.
Feature properties read from a shapefile are validated with the pydantic
model ``TreatmentFeatureProperties``, which resolves feature type and
treatment type names to ids using the vocabularies passed in as validation
context.

Example:
    Validate the properties of one shapefile feature:
        >>> props = TreatmentFeatureProperties.model_validate(
        ...     {"TU_ID": 1, "Year": "2020", "Fe_Type": "Other",
        ...      "Width_m": 240, "Length_m": 3498, "Treatments": "Seeding",
        ...      "Implement": "Y"},
        ...     context={
        ...         "feature_types": [FeatureType(1, "Other")],
        ...         "treatment_types": [TreatmentType(3, "Seeding")],
        ...     },
        ... )
        >>> props.area
        839520.0
"""

from __future__ import annotations

import dataclasses
import re
from typing import Any, TypedDict

import pydantic

INVALID_TU_ID = "Invalid TU_ID"

_LIST_SEPARATORS = re.compile(r"[;,]")
_YES_NO = {"y": "yes", "yes": "yes", "n": "no", "no": "no"}
_RECONNAISSANCE = {
    **_YES_NO,
    "na": "not applicable",
    "n/a": "not applicable",
    "not applicable": "not applicable",
}


@dataclasses.dataclass(frozen=True)
class FeatureType:
    feature_type_id: int
    name: str


@dataclasses.dataclass(frozen=True)
class TreatmentType:
    treatment_type_id: int
    name: str


class TreatmentUnitRow(TypedDict):
    treatment_unit_id: int


class TreatmentRow(TypedDict):
    treatment_id: int


class TreatmentTypeLinkRow(TypedDict):
    treatment_treatment_type_id: int


def _lookup_by_name(
    value: object,
    vocabulary: dict[str, int],
    label: str,
) -> int:
    name = str(value).strip().lower()
    if name not in vocabulary:
        raise ValueError(f"'{value}' is not a valid {label}")
    return vocabulary[name]


def _vocabulary(info: pydantic.ValidationInfo, key: str) -> dict[str, int]:
    context = info.context or {}
    if key not in context:
        raise ValueError(f"{key.replace('_', ' ')} are not available")
    if key == "feature_types":
        return {t.name.lower(): t.feature_type_id for t in context[key]}
    return {t.name.lower(): t.treatment_type_id for t in context[key]}


def _choice(value: object, choices: dict[str, str], label: str) -> str | None:
    if value is None or str(value).strip() == "":
        return None
    key = str(value).strip().lower()
    if key not in choices:
        raise ValueError(f"'{value}' is not a valid {label} value")
    return choices[key]


class TreatmentFeatureProperties(pydantic.BaseModel):
    """Validated attribute table row of one treatment unit feature.

    Fields are populated from the shapefile attribute names (the aliases).
    Validation errors are reported against those names, so a message reads
    ``Fe_Type - ...`` rather than ``feature_type_id - ...``.

    The validation context must provide ``feature_types`` (a sequence of
    ``FeatureType``) and ``treatment_types`` (a sequence of
    ``TreatmentType``); names are matched case-insensitively.
    """

    model_config = pydantic.ConfigDict(populate_by_name=True, extra="ignore")

    unit_name: str = pydantic.Field(alias="TU_ID", min_length=1)
    year: int = pydantic.Field(alias="Year", ge=1900, le=2100)
    feature_type_id: int = pydantic.Field(alias="Fe_Type")
    width: float = pydantic.Field(alias="Width_m", ge=0)
    length: float = pydantic.Field(alias="Length_m", ge=0)
    area: float | None = pydantic.Field(default=None, alias="Area_m2", ge=0)
    reconnaissance_conducted: str | None = pydantic.Field(
        default=None, alias="Recce"
    )
    treatment_type_ids: list[int] = pydantic.Field(alias="Treatments")
    implemented: str | None = pydantic.Field(default=None, alias="Implement")
    comments: str | None = pydantic.Field(default=None, alias="Comments")

    @pydantic.field_validator("unit_name", mode="before")
    @classmethod
    def _unit_name_as_text(cls, value: Any) -> Any:
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        if isinstance(value, str):
            return value.strip()
        return value

    @pydantic.field_validator("feature_type_id", mode="before")
    @classmethod
    def _resolve_feature_type(cls, value: Any, info: pydantic.ValidationInfo) -> int:
        return _lookup_by_name(
            value, _vocabulary(info, "feature_types"), "feature type"
        )

    @pydantic.field_validator("treatment_type_ids", mode="before")
    @classmethod
    def _resolve_treatment_types(
        cls, value: Any, info: pydantic.ValidationInfo
    ) -> list[int]:
        if value is None:
            names: list[str] = []
        elif isinstance(value, str):
            names = _LIST_SEPARATORS.split(value)
        elif isinstance(value, list | tuple):
            names = [str(item) for item in value]
        else:
            names = [str(value)]
        names = [name.strip() for name in names if name.strip()]
        if not names:
            raise ValueError("at least one treatment type is required")

        vocabulary = _vocabulary(info, "treatment_types")
        ids: list[int] = []
        for name in names:
            treatment_type_id = _lookup_by_name(name, vocabulary, "treatment type")
            if treatment_type_id not in ids:
                ids.append(treatment_type_id)
        return ids

    @pydantic.field_validator("reconnaissance_conducted", mode="before")
    @classmethod
    def _normalize_reconnaissance(cls, value: Any) -> str | None:
        return _choice(value, _RECONNAISSANCE, "reconnaissance")

    @pydantic.field_validator("implemented", mode="before")
    @classmethod
    def _normalize_implemented(cls, value: Any) -> str | None:
        return _choice(value, _YES_NO, "implemented")

    @pydantic.model_validator(mode="after")
    def _default_area(self) -> TreatmentFeatureProperties:
        if self.area is None:
            self.area = self.width * self.length
        return self


@dataclasses.dataclass
class ValidTreatmentFeature:
    """A GeoJSON feature whose properties passed validation."""

    feature: dict[str, Any]
    properties: TreatmentFeatureProperties

    @property
    def geometry(self) -> dict[str, Any] | None:
        return self.feature.get("geometry")


@dataclasses.dataclass
class FeatureErrors:
    treatment_unit_id: str
    errors: list[str]


@dataclasses.dataclass
class ParseFeaturesResult:
    errors: list[FeatureErrors]
    data: list[ValidTreatmentFeature]


@dataclasses.dataclass
class TreatmentYearView:
    treatment_year: str
    treatment_name: str | None
    implemented: str | None


@dataclasses.dataclass
class TreatmentUnitView:
    id: str
    type: str | None
    width: float | None
    length: float | None
    area: float | None
    geometry: dict[str, Any] | None
    reconnaissance_conducted: str | None
    comments: str | None
    treatments: list[TreatmentYearView] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class TreatmentListView:
    """Treatment rows regrouped as one entry per treatment unit.

    The aggregation query returns one row per (unit, year). Rows of the same
    unit are folded into a single ``TreatmentUnitView`` whose ``treatments``
    keep the order the rows arrived in. Unit attributes come from the first
    row seen for that unit.
    """

    treatment_list: list[TreatmentUnitView]

    @classmethod
    def from_rows(cls, rows: list[dict[str, Any]]) -> TreatmentListView:
        units: dict[tuple[str, str | None], TreatmentUnitView] = {}
        for row in rows:
            key = (str(row["id"]), row.get("type"))
            unit = units.get(key)
            if unit is None:
                geojson = row.get("geojson") or []
                unit = TreatmentUnitView(
                    id=key[0],
                    type=key[1],
                    width=row.get("width"),
                    length=row.get("length"),
                    area=row.get("area"),
                    geometry=geojson[0] if geojson else None,
                    reconnaissance_conducted=row.get("reconnaissance_conducted"),
                    comments=row.get("comments"),
                )
                units[key] = unit

            if row.get("treatment_year") is not None:
                unit.treatments.append(
                    TreatmentYearView(
                        treatment_year=str(row["treatment_year"]),
                        treatment_name=row.get("treatment_name"),
                        implemented=row.get("implemented"),
                    )
                )
        return cls(treatment_list=list(units.values()))

    def to_response(self) -> dict[str, Any]:
        return {
            "treatmentList": [
                dataclasses.asdict(unit) for unit in self.treatment_list
            ]
        }
