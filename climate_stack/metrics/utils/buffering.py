"""
Point feature helpers for zonal statistics.

Validation points are expanded into small areas (a circle or its bounding box)
before being reduced against the rasters. Buffers are built in metres in the
local UTM zone of each point and returned in the input CRS.
"""

import logging
import warnings
from typing import Any, Dict, Iterable, Mapping

import geopandas as gpd

logger = logging.getLogger(__name__)


def points_to_features(points: Iterable[Mapping[str, Any]],
                       x_field: str = 'lon', y_field: str = 'lat',
                       crs: str = 'EPSG:4326') -> gpd.GeoDataFrame:
    """Build a point GeoDataFrame from records holding coordinates and attributes.

    Example:
        >>> pts = points_to_features([{'plot_id': 'BoulderCO', 'lon': -105.24, 'lat': 40.01}])
    """
    records = [dict(point) for point in points]
    if not records:
        raise ValueError("At least one point is required")
    xs = [record.pop(x_field) for record in records]
    ys = [record.pop(y_field) for record in records]
    return gpd.GeoDataFrame(records, geometry=gpd.points_from_xy(xs, ys), crs=crs)


def buffer_points(features: gpd.GeoDataFrame, radius: float, bounds: bool = False) -> gpd.GeoDataFrame:
    """
    Expand point features into buffers of ``radius`` metres.

    Args:
        features: point features
        radius: buffer radius in metres, must be positive
        bounds: return the bounding box of each buffer instead of the circle

    Returns:
        Copy of ``features`` with buffered geometries in the input CRS; every
        geometry strictly contains its original point.
    """
    if radius <= 0:
        raise ValueError(f"Buffer radius must be positive, got {radius}")
    if features.crs is None:
        warnings.warn("No CRS defined for features, assuming EPSG:4326 (WGS84)")
        features = features.set_crs('EPSG:4326')

    buffered = []
    for geometry in features.geometry:
        # One UTM zone per point keeps metre distances accurate across a wide study area
        point = gpd.GeoSeries([geometry], crs=features.crs)
        utm = point.estimate_utm_crs()
        shape = point.to_crs(utm).buffer(radius)
        if bounds:
            shape = shape.envelope
        buffered.append(shape.to_crs(features.crs).iloc[0])

    result = features.copy()
    result = result.set_geometry(gpd.GeoSeries(buffered, index=features.index, crs=features.crs))

    contained = result.geometry.contains(features.geometry)
    if not contained.all():
        raise ValueError(f"Buffered geometries do not contain their points: {list(features.index[~contained])}")

    logger.debug(f"Buffered {len(result)} point(s) by {radius} m (bounds={bounds})")
    return result
