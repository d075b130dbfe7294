"""
Pydantic data contracts for the climate disturbance stack.

Declares the variable catalog (name plus the direction in which a value is
disturbance-relevant) and the zonal statistics configuration contract.
"""

from enum import Enum
from typing import List, Optional, Literal, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Direction(str, Enum):
    """Which extreme of a variable is disturbance-relevant.

    The value doubles as the suffix of the extremum band name.
    """
    SEEK_MIN = "min"
    SEEK_MAX = "max"


class ClimateVariable(BaseModel):
    """One climate measurement channel and its directionality."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Band name in the source dataset")
    direction: Direction = Field(..., description="Seek the minimum or the maximum")
    long_name: str = Field(default="", description="Human-readable description")
    units: str = Field(default="", description="Physical units of the band")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v.replace('_', '').isalnum():
            raise ValueError(f'Variable name must be alphanumeric: {v!r}')
        return v

    @property
    def mean_band(self) -> str:
        return f"{self.name}_mean"

    @property
    def extremum_band(self) -> str:
        return f"{self.name}_{self.direction.value}"

    @property
    def month_band(self) -> str:
        return f"{self.name}_month"


# TerraClimate variables used by the disturbance stack.
# Positive (warm/dry) variables: tmmx, vpd, def. Negative: soil, pr, pdsi.
VARIABLE_CATALOG: Tuple[ClimateVariable, ...] = (
    ClimateVariable(name="tmmx", direction=Direction.SEEK_MAX,
                    long_name="Maximum temperature", units="degC"),
    ClimateVariable(name="vpd", direction=Direction.SEEK_MAX,
                    long_name="Vapor pressure deficit", units="kPa"),
    ClimateVariable(name="def", direction=Direction.SEEK_MAX,
                    long_name="Climatic water deficit", units="mm"),
    ClimateVariable(name="soil", direction=Direction.SEEK_MIN,
                    long_name="Soil moisture", units="mm"),
    ClimateVariable(name="pr", direction=Direction.SEEK_MIN,
                    long_name="Precipitation accumulation", units="mm"),
    ClimateVariable(name="pdsi", direction=Direction.SEEK_MIN,
                    long_name="Palmer Drought Severity Index", units="1"),
)


def get_variable(name: str) -> ClimateVariable:
    """Look up a catalog variable by name."""
    for variable in VARIABLE_CATALOG:
        if variable.name == name:
            return variable
    raise KeyError(f"Unknown variable '{name}'. Available: {[v.name for v in VARIABLE_CATALOG]}")


ReducerName = Literal["mean", "median", "min", "max", "sum", "std", "count"]


class ZonalStatsConfig(BaseModel):
    """Reduction settings for zonal statistics extraction.

    ``None`` means "derive from the first timestep" for bands and image
    properties, and "identity" for the rename lists.
    """
    reducer: ReducerName = Field(default="mean", description="Per-feature pixel reducer")
    scale: Optional[float] = Field(None, gt=0, description="Sampling resolution in map units")
    crs: Optional[str] = Field(None, description="CRS in which scale is expressed")
    bands: Optional[List[str]] = Field(None, description="Bands to reduce")
    bands_rename: Optional[List[str]] = Field(None, description="Output names for bands")
    image_properties: Optional[List[str]] = Field(None, description="Timestep properties to copy")
    image_properties_rename: Optional[List[str]] = Field(None, description="Output names for properties")
    datetime_name: str = Field(default="datetime", min_length=1)
    datetime_format: str = Field(default="YYYY-MM-dd HH:mm:ss", min_length=1)

    @model_validator(mode='after')
    def validate_renames(self):
        if self.bands_rename is not None and self.bands is None:
            raise ValueError('bands_rename requires bands')
        if self.image_properties_rename is not None and self.image_properties is None:
            raise ValueError('image_properties_rename requires image_properties')
        if self.bands is not None and self.bands_rename is not None:
            if len(self.bands) != len(self.bands_rename):
                raise ValueError('bands_rename must have the same length as bands')
        if self.image_properties is not None and self.image_properties_rename is not None:
            if len(self.image_properties) != len(self.image_properties_rename):
                raise ValueError('image_properties_rename must have the same length as image_properties')
        return self
