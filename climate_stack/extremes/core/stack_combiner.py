"""
Stack combination of per-variable annual extrema.

Merges the per-variable extremum rasters of one year into a single multi-band
raster clipped to the study domain. The first variable in the mapping donates
the properties of the result; ``year`` is set from it explicitly.
"""

import logging
from typing import List, Mapping, Optional, Sequence

from climate_stack.shared.contracts.climate_data import ClimateVariable
from climate_stack.shared.exceptions import MisalignedSequence
from climate_stack.shared.raster.domain import Domain
from climate_stack.shared.raster.series import GridCellRaster

logger = logging.getLogger(__name__)


def check_alignment(per_variable_extrema: Mapping[ClimateVariable, Sequence[GridCellRaster]],
                    years: Optional[Sequence[int]] = None) -> int:
    """Validate that every per-variable sequence has the same length.

    Returns:
        The common sequence length.

    Raises:
        MisalignedSequence: if lengths differ from each other or from ``years``.
    """
    if not per_variable_extrema:
        raise MisalignedSequence("No per-variable sequences to combine")

    lengths = {variable.name: len(sequence) for variable, sequence in per_variable_extrema.items()}
    expected = len(years) if years is not None else next(iter(lengths.values()))
    mismatched = {name: n for name, n in lengths.items() if n != expected}
    if mismatched:
        raise MisalignedSequence(
            f"Per-variable sequences must all have length {expected}; got {lengths}"
        )
    return expected


def combine_year(per_variable_extrema: Mapping[ClimateVariable, Sequence[GridCellRaster]],
                 year_index: int, domain: Optional[Domain] = None,
                 years: Optional[Sequence[int]] = None) -> GridCellRaster:
    """Union the ``year_index``-th raster of every variable into one raster."""
    length = check_alignment(per_variable_extrema, years)
    if not 0 <= year_index < length:
        raise IndexError(f"year_index {year_index} out of range for {length} years")

    rasters = [sequence[year_index] for sequence in per_variable_extrema.values()]
    year_values = {raster.get('year') for raster in rasters}
    if len(year_values) != 1:
        raise MisalignedSequence(f"Rasters at index {year_index} disagree on year: {sorted(map(str, year_values))}")
    if years is not None and rasters[0].get('year') != years[year_index]:
        raise MisalignedSequence(
            f"Raster at index {year_index} is for year {rasters[0].get('year')}, expected {years[year_index]}"
        )

    first, others = rasters[0], rasters[1:]
    logger.debug(f"Combining {len(rasters)} variables for year {first.get('year')}")
    combined = first.add_bands(*others)
    combined = combined.set(year=first.get('year'))
    if domain is not None:
        combined = combined.clip(domain)
    return combined


def combine_years(per_variable_extrema: Mapping[ClimateVariable, Sequence[GridCellRaster]],
                  domain: Optional[Domain] = None,
                  years: Optional[Sequence[int]] = None) -> List[GridCellRaster]:
    """Combined rasters for every year index, in sequence order."""
    length = check_alignment(per_variable_extrema, years)
    return [combine_year(per_variable_extrema, i, domain, years) for i in range(length)]
