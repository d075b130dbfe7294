"""
Raster accessor layer: dated grids, time series and the study domain.
"""

from .series import (
    GridCellRaster,
    RasterTimeSeries,
    grid_footprint,
    grid_resolution,
    timestamp_millis,
)
from .domain import Domain, load_domain, WESTERN_NEON_DOMAINS

__all__ = [
    "GridCellRaster",
    "RasterTimeSeries",
    "grid_footprint",
    "grid_resolution",
    "timestamp_millis",
    "Domain",
    "load_domain",
    "WESTERN_NEON_DOMAINS",
]
