"""
Zonal statistics extraction over a raster time series.

Produces one row per (feature, timestep) with the reduced value of each
requested band, the feature attributes, a formatted ``datetime`` and raw
``timestamp`` (ms since epoch), and the timestep's properties. Rows whose
bands are all null (feature outside the data coverage for that timestep) are
dropped. Ordering is timestep-major, then feature order.

Sampling follows the requested ``scale``:

- ``scale=None``: the native pixels whose centres lie inside the geometry;
- ``scale=s``: a regular lattice of ``s``-spaced points inside the geometry,
  laid out in ``crs`` (or the local UTM zone when the data is geographic),
  each mapped to the source pixel that contains it. A geometry too small to
  hold a lattice point is sampled at its representative point.
"""

import logging
from typing import Dict, List, Optional, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd
import shapely
import xarray as xr
from pyproj import CRS
from rasterio.features import rasterize
from rasterio.transform import Affine, rowcol

from climate_stack.metrics.utils.datetime_format import format_datetime
from climate_stack.shared.contracts.climate_data import ZonalStatsConfig
from climate_stack.shared.exceptions import EmptyAggregationInput
from climate_stack.shared.raster.series import (
    RasterTimeSeries,
    X_DIM,
    Y_DIM,
    grid_footprint,
    grid_resolution,
)

logger = logging.getLogger(__name__)

_SAMPLE_DIM = 'sample'


def _reduce_values(values: np.ndarray, reducer: str) -> float:
    valid = values[~np.isnan(values)]
    if reducer == 'count':
        return float(valid.size)
    if valid.size == 0:
        return np.nan
    functions = {
        'mean': np.mean,
        'median': np.median,
        'min': np.min,
        'max': np.max,
        'sum': np.sum,
        'std': np.std,
    }
    return float(functions[reducer](valid))


def _native_samples(geometry, transform: Affine, shape: Tuple[int, int]) -> Tuple[np.ndarray, np.ndarray]:
    """(row, col) of the pixels whose centres fall inside ``geometry``."""
    mask = rasterize(
        [(geometry, 1)],
        out_shape=shape,
        transform=transform,
        fill=0,
        dtype='uint8'
    )
    rows, cols = np.nonzero(mask)
    return rows, cols


def _lattice_points(geometry, scale: float) -> Tuple[np.ndarray, np.ndarray]:
    """Centres of the ``scale``-sized lattice cells that fall inside ``geometry``."""
    min_x, min_y, max_x, max_y = geometry.bounds
    start_x = np.floor(min_x / scale) * scale + scale / 2
    start_y = np.floor(min_y / scale) * scale + scale / 2
    grid_x, grid_y = np.meshgrid(np.arange(start_x, max_x, scale), np.arange(start_y, max_y, scale))
    inside = shapely.contains_xy(geometry, grid_x, grid_y)
    if not inside.any():
        point = geometry.representative_point()
        return np.array([point.x]), np.array([point.y])
    return grid_x[inside], grid_y[inside]


def _scaled_samples(geometry, features_crs: str, raster_crs: str, scale: float, work_crs: Optional[str],
                    transform: Affine, shape: Tuple[int, int]) -> Tuple[np.ndarray, np.ndarray]:
    outline = gpd.GeoSeries([geometry], crs=features_crs)
    if work_crs is None:
        work_crs = outline.estimate_utm_crs() if CRS.from_user_input(raster_crs).is_geographic else raster_crs
    lattice_x, lattice_y = _lattice_points(outline.to_crs(work_crs).iloc[0], scale)
    points = gpd.GeoSeries(gpd.points_from_xy(lattice_x, lattice_y), crs=work_crs).to_crs(raster_crs)
    rows, cols = rowcol(transform, points.x.to_numpy(), points.y.to_numpy())
    rows, cols = np.atleast_1d(np.asarray(rows, dtype=int)), np.atleast_1d(np.asarray(cols, dtype=int))
    covered = (rows >= 0) & (rows < shape[0]) & (cols >= 0) & (cols < shape[1])
    return rows[covered], cols[covered]


def _sample_indices(features: gpd.GeoDataFrame, series: RasterTimeSeries,
                    config: ZonalStatsConfig) -> List[Tuple[np.ndarray, np.ndarray]]:
    """Per-feature (row, col) pixel indices to reduce."""
    if grid_resolution(series.data) is None:
        raise ValueError("scale is required: the series has no regular native resolution")
    transform = series.data.rio.transform(recalc=True)
    shape = (series.data.sizes[Y_DIM], series.data.sizes[X_DIM])
    raster_crs = series.crs
    features_crs = features.crs.to_string() if features.crs is not None else raster_crs

    if config.scale is None:
        in_raster_crs = features.to_crs(raster_crs) if features.crs is not None else features
        return [_native_samples(geometry, transform, shape) for geometry in in_raster_crs.geometry]

    return [
        _scaled_samples(geometry, features_crs, raster_crs, config.scale, config.crs, transform, shape)
        for geometry in features.geometry
    ]


def _read_samples(series: RasterTimeSeries, bands: List[str], rows: np.ndarray, cols: np.ndarray) -> Dict[str, np.ndarray]:
    """Read only the sampled pixels of each band, as (time, sample) arrays."""
    indexers = {
        Y_DIM: xr.DataArray(rows, dims=_SAMPLE_DIM),
        X_DIM: xr.DataArray(cols, dims=_SAMPLE_DIM),
    }
    return {
        band: np.asarray(series.data[band].isel(indexers).transpose(..., _SAMPLE_DIM).values, dtype=float)
        for band in bands
    }


def extract_zonal_stats(series: RasterTimeSeries, features: gpd.GeoDataFrame,
                        config: Optional[ZonalStatsConfig] = None) -> pd.DataFrame:
    """
    Reduce every timestep of ``series`` over every feature geometry.

    Args:
        series: raster time series to sample
        features: features to reduce over (points should be buffered first)
        config: reduction settings; defaults to a mean over all bands

    Returns:
        pandas.DataFrame with feature attributes, one column per renamed band,
        the configured datetime column, ``timestamp`` and image properties.

    Raises:
        EmptyAggregationInput: if the series has no timesteps
        UnknownBand: if a configured band is missing from a timestep
    """
    config = config or ZonalStatsConfig()
    if len(series) == 0:
        raise EmptyAggregationInput('series', 'zonal_stats', 'series is empty')

    first = series.first()
    bands = list(config.bands) if config.bands is not None else first.band_names
    bands_rename = list(config.bands_rename) if config.bands_rename is not None else bands
    image_props = (list(config.image_properties) if config.image_properties is not None
                   else list(first.properties.keys()))
    image_props_rename = (list(config.image_properties_rename)
                          if config.image_properties_rename is not None else image_props)
    # Timesteps share one band schema
    first.select(bands, bands_rename)

    # All timesteps share one grid, so coverage and sample locations are computed once
    footprint = grid_footprint(series.data)
    located = features.to_crs(series.crs) if features.crs is not None else features
    intersecting = located.intersects(footprint).to_numpy()
    kept = features[intersecting]
    logger.info(f"Zonal stats: {len(series)} timesteps x {len(kept)}/{len(features)} intersecting features")

    samples = _sample_indices(kept, series, config)
    offsets = np.cumsum([0] + [rows.size for rows, _ in samples])
    all_rows = np.concatenate([rows for rows, _ in samples] + [np.empty(0, dtype=int)])
    all_cols = np.concatenate([cols for _, cols in samples] + [np.empty(0, dtype=int)])
    sampled = _read_samples(series, bands, all_rows, all_cols)

    attribute_columns = [c for c in kept.columns if c != kept.geometry.name]
    attributes = kept[attribute_columns].to_dict('records')

    rows: List[Dict] = []
    for t, raster in enumerate(series):
        props = {to_name: raster.get(from_name) for from_name, to_name in zip(image_props, image_props_rename)}
        props[config.datetime_name] = format_datetime(raster.time, config.datetime_format)
        props['timestamp'] = raster.timestamp

        for k, attrs in enumerate(attributes):
            record = dict(attrs)
            for band, name in zip(bands, bands_rename):
                values = sampled[band][t, offsets[k]:offsets[k + 1]]
                record[name] = _reduce_values(values, config.reducer)
            record.update(props)
            rows.append(record)

    columns = attribute_columns + bands_rename + [p for p in image_props_rename if p not in bands_rename]
    columns += [config.datetime_name, 'timestamp']
    table = pd.DataFrame(rows, columns=list(dict.fromkeys(columns)))
    before = len(table)
    table = table.dropna(subset=bands_rename, how='all').reset_index(drop=True)
    logger.info(f"Zonal stats produced {len(table)} rows ({before - len(table)} null rows dropped)")
    return table
