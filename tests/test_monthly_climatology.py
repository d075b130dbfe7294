"""
Tests for monthly climatological means.
"""

import numpy as np
import pytest

from climate_stack.means.core.monthly_climatology import compute_month_mean, compute_monthly_means
from climate_stack.shared.exceptions import EmptyAggregationInput
from climate_stack.shared.raster.domain import Domain

from conftest import monthly_times


@pytest.fixture
def three_year_series(make_series):
    times = monthly_times(2000, 2002)
    values = np.asarray(times.year * 100 + times.month, dtype=float)
    return make_series({"tmmx": values, "pr": -values}, times)


class TestMonthlyMeans:

    def test_one_composite_per_month_in_order(self, three_year_series):
        composites = compute_monthly_means(three_year_series)

        assert len(composites) == 12
        for index, composite in enumerate(composites):
            month = index + 1
            assert composite.get("month") == month
            assert composite.band_names == ["tmmx_mean", "pr_mean"]
            # mean of 2000, 2001, 2002 is 2001
            np.testing.assert_allclose(composite.values("tmmx_mean"), 2001 * 100 + month)
            np.testing.assert_allclose(composite.values("pr_mean"), -(2001 * 100 + month))

    def test_month_subset_is_sorted(self, three_year_series):
        composites = compute_monthly_means(three_year_series, months=[12, 3, 3])

        assert [c.get("month") for c in composites] == [3, 12]

    def test_missing_values_are_skipped(self, make_series):
        times = monthly_times(2000, 2001)
        values = np.arange(len(times), dtype=float)
        values[0] = np.nan  # January 2000
        series = make_series({"pr": values}, times)

        january = compute_month_mean(series, 1)

        np.testing.assert_allclose(january.values("pr_mean"), 12.0)

    def test_empty_month_raises(self, make_series):
        times = monthly_times(2000, 2000)[:6]
        series = make_series({"pr": np.arange(6)}, times)

        with pytest.raises(EmptyAggregationInput) as exc_info:
            compute_month_mean(series, 9)
        assert exc_info.value.unit == "month"
        assert exc_info.value.value == 9

    def test_invalid_month(self, three_year_series):
        with pytest.raises(ValueError):
            compute_month_mean(three_year_series, 13)

    def test_clipped_to_domain(self, three_year_series):
        domain = Domain.from_bounds(1.0, 0.0, 3.0, 4.0)

        composite = compute_month_mean(three_year_series, 6, domain)
        values = composite.values("tmmx_mean")

        assert np.all(np.isnan(values[:, 0]))
        np.testing.assert_allclose(values[:, 1:], 2001 * 100 + 6)
