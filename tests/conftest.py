"""
Shared fixtures: small synthetic monthly rasters on a north-up lat/lon grid.
"""

import logging

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
import xarray as xr
from shapely.geometry import box

from climate_stack.shared.raster.series import RasterTimeSeries

# Grid cell centres, 1 degree cells: lon 0.5..2.5, lat 3.5..0.5 (descending)
LON = np.array([0.5, 1.5, 2.5])
LAT = np.array([3.5, 2.5, 1.5, 0.5])


def monthly_times(start_year: int, end_year: int) -> pd.DatetimeIndex:
    return pd.date_range(f"{start_year}-01-01", f"{end_year}-12-01", freq="MS")


def build_series(bands, times, lat=LAT, lon=LON, coords=None) -> RasterTimeSeries:
    """Series from ``{band: array (time, lat, lon)}``; scalars per timestep are broadcast."""
    times = pd.DatetimeIndex(times)
    data_vars = {}
    for name, values in bands.items():
        values = np.asarray(values, dtype=float)
        if values.ndim == 1:
            values = np.broadcast_to(values[:, None, None], (len(times), len(lat), len(lon))).copy()
        data_vars[name] = (("time", "lat", "lon"), values)
    ds = xr.Dataset(data_vars, coords={"time": times, "lat": lat, "lon": lon})
    for name, values in (coords or {}).items():
        ds = ds.assign_coords({name: ("time", list(values))})
    return RasterTimeSeries(ds, crs="EPSG:4326")


@pytest.fixture
def make_series():
    """Factory for synthetic series."""
    return build_series


@pytest.fixture
def two_year_series():
    """tmmx and pr for 2000-2001.

    tmmx = year offset * 100 + month, so December is hottest;
    pr = 100 - month + year offset, so December is driest.
    """
    times = monthly_times(2000, 2001)
    year_offset = np.asarray(times.year - 2000, dtype=float)
    months = np.asarray(times.month, dtype=float)
    return build_series({
        "tmmx": year_offset * 100 + months,
        "pr": 100 - months + year_offset,
    }, times)


@pytest.fixture
def grid_polygons():
    """Two features inside the grid and one far outside it."""
    return gpd.GeoDataFrame(
        {"plot_id": ["north", "south", "outside"]},
        geometry=[box(0.0, 2.0, 2.0, 4.0), box(1.0, 0.0, 3.0, 1.0), box(50.0, 50.0, 51.0, 51.0)],
        crs="EPSG:4326",
    )


@pytest.fixture(autouse=True)
def quiet_logging(caplog):
    caplog.set_level(logging.INFO)
    yield
