#!/usr/bin/env python3
"""
I/O utilities for TerraClimate inputs and stack products.

Reads the monthly TerraClimate NetCDF files into one lazily evaluated
``RasterTimeSeries`` and writes finished products: GeoTIFF rasters named from
a template, and zonal statistics tables.
"""

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import xarray as xr
from rasterio.enums import Resampling

from climate_stack.shared.raster.series import DEFAULT_CRS, GridCellRaster, RasterTimeSeries, X_DIM, Y_DIM

logger = logging.getLogger(__name__)

# Band names used by the stack mapped to the variable names of the TerraClimate files
TERRACLIMATE_FILE_NAMES: Dict[str, str] = {
    'tmmx': 'tmax',
    'tmmn': 'tmin',
    'vpd': 'vpd',
    'def': 'def',
    'soil': 'soil',
    'pr': 'ppt',
    'pdsi': 'PDSI',
    'aet': 'aet',
    'pet': 'pet',
}

TERRACLIMATE_OPENDAP_URL = (
    "http://thredds.northwestknowledge.net:8080/thredds/dodsC/"
    "agg_terraclimate_{file_var}_1958_CurrentYear_GLOBE.nc"
)

TABLE_FORMATS = ('CSV', 'JSON')


def file_variable_name(variable: str) -> str:
    """TerraClimate file name component for a stack band name."""
    return TERRACLIMATE_FILE_NAMES.get(variable, variable)


def extract_year_from_filename(file_path: str) -> Optional[int]:
    """
    Extract year from a TerraClimate filename.

    Expected format: TerraClimate_{var}_{YYYY}.nc
    """
    match = re.search(r'_(\d{4})\.nc$', Path(file_path).name)
    if match:
        return int(match.group(1))
    return None


class TerraClimateFileHandler:
    """
    File handler for a directory of yearly TerraClimate files.

    Expected structure (flat, or one sub-directory per variable):
    data_dir/
    ├── TerraClimate_ppt_1958.nc
    ├── TerraClimate_ppt_1959.nc
    └── tmax/TerraClimate_tmax_1958.nc
    """

    def __init__(self, data_directory: Union[str, Path]):
        self.data_dir = Path(data_directory)

        if not self.data_dir.exists():
            raise FileNotFoundError(f"Data directory not found: {data_directory}")

        logger.info(f"Initialized file handler: {data_directory}")

    def _candidates(self, variable: str) -> List[Path]:
        pattern = f"TerraClimate_{file_variable_name(variable)}_*.nc"
        return sorted(self.data_dir.glob(pattern)) + sorted(self.data_dir.glob(f"*/{pattern}"))

    def get_files_for_period(self, variable: str, start_year: int, end_year: int) -> List[str]:
        """
        Files for a variable and year range (both inclusive), sorted by year.
        """
        files = {}
        for file_path in self._candidates(variable):
            year = extract_year_from_filename(str(file_path))
            if year and start_year <= year <= end_year:
                files.setdefault(year, str(file_path))

        logger.debug(f"Found {len(files)} files for {variable} {start_year}-{end_year}")
        return [files[year] for year in sorted(files)]

    def get_available_years(self, variable: str) -> Tuple[int, int]:
        """
        Returns:
            Tuple of (start_year, end_year) or (0, 0) if no data found
        """
        years = [extract_year_from_filename(str(p)) for p in self._candidates(variable)]
        years = [y for y in years if y]
        if years:
            return min(years), max(years)
        return 0, 0

    def validate_data_availability(self, variables: Iterable[str]) -> Dict[str, Tuple[int, int]]:
        availability = {}
        for variable in variables:
            start_year, end_year = self.get_available_years(variable)
            if start_year > 0:
                availability[variable] = (start_year, end_year)
                logger.info(f"{variable}: {start_year}-{end_year}")
            else:
                logger.warning(f"⚠️  No TerraClimate files found for {variable}")
        return availability


def _subset_bounds(ds: xr.Dataset, bounds: Sequence[float]) -> xr.Dataset:
    """Crop to ``(min_x, min_y, max_x, max_y)`` whatever the axis orientation."""
    min_x, min_y, max_x, max_y = bounds
    lat = ds[Y_DIM].values
    lat_slice = slice(max_y, min_y) if lat[0] > lat[-1] else slice(min_y, max_y)
    return ds.sel({X_DIM: slice(min_x, max_x), Y_DIM: lat_slice})


def _normalise_dims(ds: xr.Dataset) -> xr.Dataset:
    renames = {name: target for name, target in (('latitude', Y_DIM), ('longitude', X_DIM))
               if name in ds.dims}
    return ds.rename(renames) if renames else ds


def open_terraclimate_series(input_dir: Optional[Union[str, Path]],
                             variables: Sequence[str],
                             start_year: int,
                             end_year: int,
                             bounds: Optional[Sequence[float]] = None,
                             chunks: Optional[Dict[str, int]] = None) -> RasterTimeSeries:
    """
    Open TerraClimate monthly data for ``variables`` as one series.

    Args:
        input_dir: directory of yearly files; ``None`` reads the OPeNDAP aggregation
        variables: stack band names (e.g. ``tmmx``, ``pr``)
        start_year, end_year: inclusive year range
        bounds: optional ``(min_x, min_y, max_x, max_y)`` crop in degrees
        chunks: dask chunk sizes

    Returns:
        RasterTimeSeries whose bands are named after ``variables``, EPSG:4326.
    """
    chunks = chunks or {'time': 12, Y_DIM: 512, X_DIM: 512}
    handler = TerraClimateFileHandler(input_dir) if input_dir is not None else None
    if handler is not None:
        availability = handler.validate_data_availability(variables)
        missing = [v for v in variables if v not in availability]
        if missing:
            raise FileNotFoundError(f"No TerraClimate files for {missing} in {input_dir}")

    per_variable = []
    for variable in variables:
        file_var = file_variable_name(variable)
        if handler is not None:
            files = handler.get_files_for_period(variable, start_year, end_year)
            if not files:
                raise FileNotFoundError(
                    f"No TerraClimate files for {variable} ({file_var}) {start_year}-{end_year} in {input_dir}"
                )
            ds = xr.open_mfdataset(files, combine='by_coords', chunks=chunks)
        else:
            url = TERRACLIMATE_OPENDAP_URL.format(file_var=file_var)
            logger.info(f"Opening remote aggregation {url}")
            ds = xr.open_dataset(url, chunks=chunks)

        ds = _normalise_dims(ds)
        ds = ds.sel(time=slice(f"{start_year}-01-01", f"{end_year}-12-31"))
        if bounds is not None:
            ds = _subset_bounds(ds, bounds)
        per_variable.append(ds[[file_var]].rename({file_var: variable}))
        logger.info(f"📂 {variable}: {ds.sizes.get('time', 0)} timesteps")

    merged = xr.merge(per_variable, join='exact', combine_attrs='drop_conflicts')
    return RasterTimeSeries(merged, crs=DEFAULT_CRS)


def export_rasters(rasters: Sequence[GridCellRaster],
                   output_dir: Union[str, Path],
                   folder: str,
                   name_template: str,
                   scale: float,
                   crs: str) -> List[str]:
    """
    Write each raster to ``{output_dir}/{folder}/{name}.tif``.

    The file name is ``name_template`` formatted with the raster properties
    (e.g. ``AllVariables_{year}``). Rasters are reprojected to ``crs`` at
    ``scale`` map units per pixel; properties are stored as GeoTIFF tags.

    Returns:
        Paths of the written files.
    """
    target_dir = Path(output_dir) / folder
    target_dir.mkdir(parents=True, exist_ok=True)

    written = []
    for raster in rasters:
        try:
            name = name_template.format(**raster.properties)
        except KeyError as e:
            raise ValueError(f"Name template {name_template!r} needs property {e} missing from {raster}") from e

        ds = raster.to_xarray().astype(np.float32)
        for band in ds.data_vars:
            ds[band] = ds[band].rio.write_nodata(np.nan, encoded=False)
            ds[band].attrs['long_name'] = band
        reprojected = ds.rio.reproject(crs, resolution=scale, resampling=Resampling.nearest)

        output_file = target_dir / f"{name}.tif"
        tags = {key: str(value) for key, value in raster.properties.items()}
        reprojected.rio.to_raster(output_file, tags=tags)
        logger.info(f"💾 Saved: {output_file}")
        written.append(str(output_file))
    return written


def export_table(table: pd.DataFrame,
                 output_dir: Union[str, Path],
                 folder: str,
                 description: str,
                 file_format: str = 'CSV') -> str:
    """
    Write a zonal statistics table to ``{output_dir}/{folder}/{description}.{ext}``.
    """
    file_format = file_format.upper()
    if file_format not in TABLE_FORMATS:
        raise ValueError(f"Unsupported table format {file_format!r}; expected one of {TABLE_FORMATS}")

    target_dir = Path(output_dir) / folder
    target_dir.mkdir(parents=True, exist_ok=True)
    output_file = target_dir / f"{description}.{file_format.lower()}"

    if file_format == 'CSV':
        table.to_csv(output_file, index=False)
    else:
        table.to_json(output_file, orient='records', indent=2)

    logger.info(f"💾 Saved {len(table)} rows: {output_file}")
    return str(output_file)
