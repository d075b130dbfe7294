"""
Data contracts shared across the climate stack packages.
"""

from .climate_data import (
    Direction,
    ClimateVariable,
    VARIABLE_CATALOG,
    get_variable,
    ZonalStatsConfig,
)
from .pipeline_interface import (
    PipelineStage,
    FailedUnitContract,
    ProcessingReport,
)

__all__ = [
    "Direction",
    "ClimateVariable",
    "VARIABLE_CATALOG",
    "get_variable",
    "ZonalStatsConfig",
    "PipelineStage",
    "FailedUnitContract",
    "ProcessingReport",
]
