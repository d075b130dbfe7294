"""
Annual extremum extraction.

For every year, finds each pixel's extremal value of one variable (minimum for
moisture variables, maximum for heat/deficit variables) together with the
calendar month in which it occurred. The month travels as an extra band
through a payload-preserving reduction, so the output has two bands:
``{variable}_{min|max}`` and ``{variable}_month``, with property ``year``.
"""

import logging
from typing import Iterable, List, Union

import numpy as np
import xarray as xr

from climate_stack.extremes.core.reducers import reduce_with_payload
from climate_stack.shared.contracts.climate_data import ClimateVariable, Direction
from climate_stack.shared.exceptions import EmptyAggregationInput, UnknownBand
from climate_stack.shared.raster.series import (
    GridCellRaster,
    RasterTimeSeries,
    X_DIM,
    Y_DIM,
)

logger = logging.getLogger(__name__)

MONTH_BAND = 'month'


def argextreme_reduce(series: RasterTimeSeries, key_band: str,
                      direction: Union[Direction, str]) -> GridCellRaster:
    """Reduce a series to the per-pixel record that is extremal on ``key_band``.

    Every band of the series is kept (same names, same order) and each is
    taken from the winning timestep. Ties go to the earliest timestep.
    """
    if len(series) == 0:
        raise EmptyAggregationInput('series', 'argextreme', 'series is empty')
    if key_band not in series.band_names:
        raise UnknownBand(key_band, None, series.band_names)

    ds = series.data
    bands = series.band_names
    keys = np.asarray(ds[key_band].values, dtype=float)
    payload = np.stack([np.asarray(ds[band].values, dtype=float) for band in bands], axis=1)
    winner = reduce_with_payload(keys, payload, direction)

    coords = {Y_DIM: ds[Y_DIM].values, X_DIM: ds[X_DIM].values}
    reduced = xr.Dataset({
        band: xr.DataArray(winner[i], dims=(Y_DIM, X_DIM), coords=coords, attrs=ds[band].attrs)
        for i, band in enumerate(bands)
    })
    return GridCellRaster(reduced, crs=series.crs)


def compute_year_extremum(series: RasterTimeSeries, variable: ClimateVariable,
                          year: int) -> GridCellRaster:
    """Extremum of ``variable`` over ``year`` and the month it occurred in."""
    subset = series.filter_year(year)
    if len(subset) == 0:
        raise EmptyAggregationInput('year', year, f"variable {variable.name}")

    working = subset.select([variable.name]).add_month_band(MONTH_BAND)
    logger.debug(f"Reducing {len(working)} timesteps of {variable.name} for {year} "
                 f"(seek {variable.direction.value})")
    extremum = argextreme_reduce(working, variable.name, variable.direction)
    extremum = extremum.rename([variable.extremum_band, variable.month_band])
    return extremum.set(year=int(year))


def compute_annual_extremum(series: RasterTimeSeries, variable: ClimateVariable,
                            years: Iterable[int]) -> List[GridCellRaster]:
    """One extremum raster per year, in the order of ``years``."""
    return [compute_year_extremum(series, variable, year) for year in years]
