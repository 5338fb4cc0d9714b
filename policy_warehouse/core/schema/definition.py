"""
Schema definition models: field specs, geo points and dataset layouts.
"""

from typing import Literal

from pydantic import BaseModel, Field, model_validator


class FieldSpec(BaseModel):
    """
    Expected type and nullability of one column.

    Attributes:
        name: Column name
        type: Semantic type: string, integer, decimal, date, float
        nullable: Whether a null token is acceptable
        precision: Total digits (decimal only)
        scale: Digits after the point (decimal only)
        formats: Extra strptime formats accepted for dates
    """

    name: str = Field(..., min_length=1)
    type: Literal["string", "integer", "decimal", "date", "float"]
    nullable: bool = False
    precision: int | None = Field(None, gt=0)
    scale: int | None = Field(None, ge=0)
    formats: list[str] = Field(default_factory=list)

    class Config:
        frozen = True

    @model_validator(mode="after")
    def check_decimal_shape(self) -> "FieldSpec":
        if self.type == "decimal":
            if self.precision is None or self.scale is None:
                raise ValueError(f"decimal field '{self.name}' needs precision and scale")
            if self.scale > self.precision:
                raise ValueError(f"decimal field '{self.name}' has scale > precision")
        return self


class GeoPoint(BaseModel):
    """
    A float pair packed into one location value during transform.

    Attributes:
        name: Name of the packed location field
        latitude: Column holding the latitude
        longitude: Column holding the longitude
        nullable: Whether a fully-null pair is acceptable
    """

    name: str = Field(..., min_length=1)
    latitude: str
    longitude: str
    nullable: bool = False

    class Config:
        frozen = True


class SchemaDefinition(BaseModel):
    """
    Immutable column layout for a dataset.

    Field order is the column order expected in landed files.
    """

    dataset: str = Field(..., min_length=1)
    fields: tuple[FieldSpec, ...] = Field(..., min_length=1)
    geo_points: tuple[GeoPoint, ...] = ()
    key_field: str

    class Config:
        frozen = True

    @model_validator(mode="after")
    def check_references(self) -> "SchemaDefinition":
        names = [spec.name for spec in self.fields]
        if len(names) != len(set(names)):
            raise ValueError(f"dataset '{self.dataset}' has duplicate field names")

        by_name = {spec.name: spec for spec in self.fields}
        if self.key_field not in by_name:
            raise ValueError(f"key field '{self.key_field}' is not a field of '{self.dataset}'")

        for point in self.geo_points:
            for column in (point.latitude, point.longitude):
                spec = by_name.get(column)
                if spec is None:
                    raise ValueError(f"geo point '{point.name}' references unknown field '{column}'")
                if spec.type != "float":
                    raise ValueError(f"geo point '{point.name}' needs float field '{column}'")
        return self

    @property
    def column_names(self) -> list[str]:
        return [spec.name for spec in self.fields]

    @property
    def geo_columns(self) -> set[str]:
        columns = set()
        for point in self.geo_points:
            columns.update((point.latitude, point.longitude))
        return columns
