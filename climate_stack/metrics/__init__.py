"""
Climate Metrics - zonal statistics over raster time series.
"""

from .core.zonal_stats import extract_zonal_stats
from .utils.buffering import buffer_points, points_to_features

__all__ = [
    "extract_zonal_stats",
    "buffer_points",
    "points_to_features",
]
