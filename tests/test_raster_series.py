"""
Tests for the raster time series accessor.
"""

import numpy as np
import pandas as pd
import pytest
import xarray as xr

from climate_stack.shared.exceptions import DuplicateBandName, EmptyAggregationInput, UnknownBand
from climate_stack.shared.raster.domain import Domain
from climate_stack.shared.raster.series import (
    GridCellRaster,
    RasterTimeSeries,
    grid_footprint,
    grid_resolution,
    timestamp_millis,
)

from conftest import LAT, LON, monthly_times


def _raster(bands, **properties):
    data = xr.Dataset({name: (("lat", "lon"), np.full((len(LAT), len(LON)), value, dtype=float))
                       for name, value in bands.items()},
                      coords={"lat": LAT, "lon": LON})
    return GridCellRaster(data, time=pd.Timestamp("2000-07-01"), properties=properties)


class TestRasterTimeSeries:
    """Filtering, selection and iteration."""

    def test_filter_month_keeps_time_order(self, make_series):
        times = monthly_times(2000, 2002)
        series = make_series({"a": np.arange(len(times))}, times)

        july = series.filter_month(7)

        assert len(july) == 3
        assert list(july.times.year) == [2000, 2001, 2002]
        assert [float(r.values("a")[0, 0]) for r in july] == [6.0, 18.0, 30.0]

    def test_filter_year_and_calendar_wrap(self, make_series):
        times = monthly_times(2000, 2001)
        series = make_series({"a": np.arange(len(times))}, times)

        assert len(series.filter_year(2001)) == 12
        winter = series.filter_calendar("month", 11, 2)
        assert list(winter.times.month) == [1, 2, 11, 12, 1, 2, 11, 12]

    def test_filter_date_is_half_open(self, make_series):
        times = monthly_times(2000, 2000)
        series = make_series({"a": np.arange(12)}, times)

        subset = series.filter_date("2000-03-01", "2000-06-01")

        assert list(subset.times.month) == [3, 4, 5]

    def test_unsorted_input_is_sorted(self, make_series):
        times = monthly_times(2000, 2000)[::-1]
        series = make_series({"a": np.arange(12)}, times)

        assert series.times.is_monotonic_increasing

    def test_select_unknown_band(self, make_series):
        series = make_series({"a": np.arange(12)}, monthly_times(2000, 2000))

        with pytest.raises(UnknownBand) as exc_info:
            series.select(["b"])
        assert exc_info.value.band == "b"

    def test_select_with_rename(self, make_series):
        series = make_series({"a": np.arange(12), "b": np.arange(12)}, monthly_times(2000, 2000))

        renamed = series.select(["b"], ["bee"])

        assert renamed.band_names == ["bee"]
        assert series.band_names == ["a", "b"]

    def test_properties_become_raster_properties(self, make_series):
        times = monthly_times(2000, 2000)
        series = make_series({"a": np.arange(12)}, times, coords={"scene": [f"s{i}" for i in range(12)]})

        third = series[2]

        assert series.property_names == ["scene"]
        assert third.get("scene") == "s2"
        assert third.time == pd.Timestamp("2000-03-01")
        assert third.band_names == ["a"]

    def test_add_month_band(self, make_series):
        series = make_series({"a": np.arange(12)}, monthly_times(2000, 2000))

        with_month = series.add_month_band()

        assert with_month.band_names == ["a", "month"]
        months = with_month.data["month"].values[:, 0, 0]
        np.testing.assert_array_equal(months, np.arange(1, 13, dtype=float))

    def test_mean_skips_missing(self, make_series):
        values = np.array([1.0, np.nan, 3.0])
        series = make_series({"a": values}, pd.date_range("2000-01-01", periods=3, freq="MS"))

        mean = series.mean()

        assert mean.values("a")[0, 0] == pytest.approx(2.0)

    def test_first_of_empty_series(self, make_series):
        series = make_series({"a": np.arange(12)}, monthly_times(2000, 2000)).filter_year(1999)

        assert len(series) == 0
        with pytest.raises(EmptyAggregationInput):
            series.first()

    def test_from_rasters_round_trip(self):
        first = _raster({"a": 1.0}, year=2000)
        second = GridCellRaster(first.data + 1, time=pd.Timestamp("2001-07-01"), properties={"year": 2001})

        series = RasterTimeSeries.from_rasters([second, first])

        assert [r.get("year") for r in series] == [2000, 2001]


class TestGridCellRaster:
    """Immutable single-timestep raster operations."""

    def test_set_returns_new_raster(self):
        raster = _raster({"a": 1.0}, month=1)

        updated = raster.set(month=2, year=2000)

        assert raster.get("month") == 1
        assert updated.get("month") == 2
        assert updated.get("year") == 2000

    def test_add_bands_keeps_receiver_properties(self):
        left = _raster({"a": 1.0}, year=2000)
        right = _raster({"b": 2.0}, year=1999, extra="x")

        combined = left.add_bands(right)

        assert combined.band_names == ["a", "b"]
        assert combined.get("year") == 2000
        assert combined.get("extra") is None
        assert left.band_names == ["a"]

    def test_add_bands_rejects_duplicates(self):
        with pytest.raises(DuplicateBandName) as exc_info:
            _raster({"a": 1.0, "b": 2.0}).add_bands(_raster({"b": 3.0}))
        assert exc_info.value.bands == ["b"]

    def test_rename_positional_and_mapping(self):
        raster = _raster({"a": 1.0, "b": 2.0})

        assert raster.rename(["x", "y"]).band_names == ["x", "y"]
        assert raster.rename({"b": "z"}).band_names == ["a", "z"]
        with pytest.raises(ValueError):
            raster.rename(["only_one"])

    def test_missing_band_names_timestep(self):
        raster = _raster({"a": 1.0})

        with pytest.raises(UnknownBand) as exc_info:
            raster["nope"]
        assert exc_info.value.timestep == pd.Timestamp("2000-07-01")

    def test_clip_masks_outside_domain(self):
        raster = _raster({"a": 5.0})
        domain = Domain.from_bounds(0.0, 2.0, 3.0, 4.0)

        clipped = raster.clip(domain)
        values = clipped.values("a")

        assert values.shape == (4, 3)
        assert np.all(values[:2] == 5.0)
        assert np.all(np.isnan(values[2:]))

    def test_timestamp_millis(self):
        raster = _raster({"a": 1.0})

        assert raster.timestamp == timestamp_millis("2000-07-01")
        assert timestamp_millis("1970-01-02") == 86_400_000
        assert timestamp_millis("1969-12-31") == -86_400_000


def test_grid_geometry_helpers(make_series):
    series = make_series({"a": np.arange(12)}, monthly_times(2000, 2000))

    assert grid_resolution(series.data) == (1.0, 1.0)
    assert grid_footprint(series.data).bounds == (0.0, 0.0, 3.0, 4.0)

    irregular = series.data.assign_coords(lon=[0.5, 1.5, 4.0])
    assert grid_resolution(irregular) is None
