"""
Climate Extremes - per-year variable extrema and the combined yearly stack.
"""

from .core.annual_extremes import compute_annual_extremum, compute_year_extremum
from .core.stack_combiner import combine_year, combine_years

__all__ = [
    "compute_annual_extremum",
    "compute_year_extremum",
    "combine_year",
    "combine_years",
]
