"""
Climate Means - monthly climatological means and the shared task engine.
"""

from .core.monthly_climatology import compute_month_mean, compute_monthly_means

__all__ = [
    "compute_month_mean",
    "compute_monthly_means",
]
