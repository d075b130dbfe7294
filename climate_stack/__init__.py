"""
Climate Disturbance Stack

Derives climate disturbance products from a gridded monthly climate record
(TerraClimate) clipped to a study domain:
- Monthly climatological means
- Annual extrema with month of occurrence, combined per year
- Zonal statistics at validation points
"""

__version__ = "0.1.0"

from . import shared
from . import means
from . import extremes
from . import metrics

__all__ = [
    "shared",
    "means",
    "extremes",
    "metrics",
]
