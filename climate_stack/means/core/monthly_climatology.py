"""
Monthly climatology aggregation.

For each calendar month, averages every timestep of that month across the
whole record into one multi-band composite (``{variable}_mean`` bands, property
``month``) clipped to the study domain.
"""

import logging
from typing import Iterable, List, Optional

from climate_stack.shared.exceptions import EmptyAggregationInput
from climate_stack.shared.raster.domain import Domain
from climate_stack.shared.raster.series import GridCellRaster, RasterTimeSeries

logger = logging.getLogger(__name__)

MONTHS = tuple(range(1, 13))


def compute_month_mean(series: RasterTimeSeries, month: int,
                       domain: Optional[Domain] = None) -> GridCellRaster:
    """Mean composite of all timesteps whose calendar month equals ``month``."""
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be in 1..12, got {month}")

    subset = series.filter_month(month)
    if len(subset) == 0:
        raise EmptyAggregationInput('month', month)

    logger.debug(f"Averaging {len(subset)} timesteps for month {month}")
    means = subset.mean()
    means = means.rename([f"{band}_mean" for band in means.band_names])
    means = means.set(month=int(month))
    if domain is not None:
        means = means.clip(domain)
    return means.compute()


def compute_monthly_means(series: RasterTimeSeries, months: Iterable[int] = MONTHS,
                          domain: Optional[Domain] = None) -> List[GridCellRaster]:
    """Monthly mean composites in month-ascending order.

    Callers rely on positional lookup (index ``m - 1`` holds month ``m`` when
    all twelve months are requested), so the months are sorted.
    """
    return [compute_month_mean(series, month, domain) for month in sorted(set(months))]
