"""
Shared components for the climate stack.

Contains the data contracts, the raster accessor layer and the exception
hierarchy used by the means, extremes and metrics packages.
"""

from .contracts.climate_data import ClimateVariable, Direction, VARIABLE_CATALOG
from .exceptions import (
    ClimateStackError,
    ConfigurationError,
    StructuralError,
    EmptyAggregationInput,
    MisalignedSequence,
    DuplicateBandName,
    UnknownBand,
    RemoteComputeFailure,
)

__all__ = [
    "ClimateVariable",
    "Direction",
    "VARIABLE_CATALOG",
    "ClimateStackError",
    "ConfigurationError",
    "StructuralError",
    "EmptyAggregationInput",
    "MisalignedSequence",
    "DuplicateBandName",
    "UnknownBand",
    "RemoteComputeFailure",
]
