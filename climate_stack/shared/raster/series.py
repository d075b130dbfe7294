"""
Raster time series accessor backed by xarray.

``GridCellRaster`` is one dated multi-band grid (one data variable per band on
``lat``/``lon``) plus a property dict. ``RasterTimeSeries`` is the same band
schema stacked along ``time``. Both are immutable: every operation returns a
new object built from new xarray objects.

Per-timestep properties of a series are its non-index coordinates that vary
only along ``time``; they become the ``properties`` of the rasters yielded by
iteration.
"""

import logging
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import rioxarray  # noqa: F401  (registers the .rio accessor)
import xarray as xr
from shapely.geometry import box

from climate_stack.shared.exceptions import (
    DuplicateBandName,
    EmptyAggregationInput,
    UnknownBand,
)

logger = logging.getLogger(__name__)

X_DIM = 'lon'
Y_DIM = 'lat'
TIME_DIM = 'time'
DEFAULT_CRS = 'EPSG:4326'
CALENDAR_FIELDS = ('year', 'month', 'day', 'dayofyear')

_EPOCH = pd.Timestamp('1970-01-01')


def timestamp_millis(time) -> int:
    """Milliseconds since the Unix epoch (negative before 1970)."""
    return int((pd.Timestamp(time) - _EPOCH) // pd.Timedelta(milliseconds=1))


def grid_resolution(ds: Union[xr.Dataset, xr.DataArray]) -> Optional[Tuple[float, float]]:
    """Return the (x, y) pixel size, or None if either axis is irregular or has fewer than two cells."""
    sizes = []
    for dim in (X_DIM, Y_DIM):
        coords = np.asarray(ds[dim].values, dtype=float)
        if coords.size < 2:
            return None
        steps = np.diff(coords)
        if not np.allclose(steps, steps[0], rtol=1e-6, atol=0.0):
            return None
        sizes.append(abs(float(steps[0])))
    return sizes[0], sizes[1]


def grid_footprint(ds: Union[xr.Dataset, xr.DataArray]):
    """Bounding box of the grid cell edges (cell centres when the resolution is unknown)."""
    xs = np.asarray(ds[X_DIM].values, dtype=float)
    ys = np.asarray(ds[Y_DIM].values, dtype=float)
    resolution = grid_resolution(ds)
    half_x, half_y = (resolution[0] / 2, resolution[1] / 2) if resolution else (0.0, 0.0)
    return box(xs.min() - half_x, ys.min() - half_y, xs.max() + half_x, ys.max() + half_y)


def _time_index(ds: xr.Dataset) -> pd.DatetimeIndex:
    index = ds.indexes[TIME_DIM]
    if isinstance(index, xr.CFTimeIndex):
        index = index.to_datetimeindex()
    return pd.DatetimeIndex(index)


def _to_python(value: Any) -> Any:
    if isinstance(value, np.generic):
        return value.item()
    return value


def _with_spatial_ref(ds: xr.Dataset, crs: str) -> xr.Dataset:
    """Register the spatial dims with rioxarray and write a CRS when none is set."""
    missing = [dim for dim in (X_DIM, Y_DIM) if dim not in ds.dims]
    if missing:
        raise ValueError(f"Dataset is missing spatial dimension(s) {missing}")
    ds = ds.rio.set_spatial_dims(x_dim=X_DIM, y_dim=Y_DIM)
    if ds.rio.crs is None:
        ds = ds.rio.write_crs(crs)
    return ds


class GridCellRaster:
    """One dated multi-band grid with scalar metadata properties."""

    def __init__(self, data: xr.Dataset, time=None,
                 properties: Optional[Mapping[str, Any]] = None,
                 crs: str = DEFAULT_CRS):
        extra_dims = set(data.dims) - {X_DIM, Y_DIM}
        if extra_dims:
            raise ValueError(f"GridCellRaster bands must be 2-D ({Y_DIM}, {X_DIM}); got extra dims {sorted(extra_dims)}")
        self._data = _with_spatial_ref(data.transpose(Y_DIM, X_DIM), crs)
        self._time = pd.Timestamp(time) if time is not None else None
        self._properties = MappingProxyType(dict(properties or {}))

    def __repr__(self):
        return (f"GridCellRaster(time={self._time}, bands={self.band_names}, "
                f"properties={dict(self._properties)})")

    @property
    def data(self) -> xr.Dataset:
        return self._data

    @property
    def time(self) -> Optional[pd.Timestamp]:
        return self._time

    @property
    def timestamp(self) -> Optional[int]:
        """Acquisition time in milliseconds since the epoch."""
        return timestamp_millis(self._time) if self._time is not None else None

    @property
    def properties(self) -> Mapping[str, Any]:
        return self._properties

    @property
    def crs(self) -> str:
        return self._data.rio.crs.to_string()

    @property
    def band_names(self) -> List[str]:
        return list(self._data.data_vars)

    @property
    def footprint(self):
        return grid_footprint(self._data)

    def get(self, name: str, default: Any = None) -> Any:
        return self._properties.get(name, default)

    def __getitem__(self, band: str) -> xr.DataArray:
        if band not in self._data.data_vars:
            raise UnknownBand(band, self._time, self.band_names)
        return self._data[band]

    def _derive(self, data: xr.Dataset, properties: Optional[Mapping[str, Any]] = None) -> 'GridCellRaster':
        props = self._properties if properties is None else properties
        return GridCellRaster(data, time=self._time, properties=props, crs=self.crs)

    def select(self, bands: Sequence[str], rename: Optional[Sequence[str]] = None) -> 'GridCellRaster':
        """Keep only ``bands`` (in that order), optionally renaming them positionally."""
        bands = list(bands)
        for band in bands:
            if band not in self._data.data_vars:
                raise UnknownBand(band, self._time, self.band_names)
        selected = self._derive(self._data[bands])
        return selected.rename(rename) if rename is not None else selected

    def rename(self, names: Union[Sequence[str], Mapping[str, str]]) -> 'GridCellRaster':
        """Rename bands, either positionally from a sequence or from an old->new mapping."""
        if isinstance(names, Mapping):
            mapping = dict(names)
            for band in mapping:
                if band not in self._data.data_vars:
                    raise UnknownBand(band, self._time, self.band_names)
        else:
            names = list(names)
            if len(names) != len(self.band_names):
                raise ValueError(f"Expected {len(self.band_names)} band names, got {len(names)}")
            mapping = dict(zip(self.band_names, names))
        if len(set(mapping.values())) != len(mapping):
            raise DuplicateBandName([n for n in mapping.values() if list(mapping.values()).count(n) > 1])
        return self._derive(self._data.rename(mapping))

    def set(self, **properties) -> 'GridCellRaster':
        """Return a copy with ``properties`` added or replaced."""
        merged = dict(self._properties)
        merged.update(properties)
        return self._derive(self._data, merged)

    def add_bands(self, *others: 'GridCellRaster') -> 'GridCellRaster':
        """Non-destructive band union.

        The result keeps this raster's time and properties; the other rasters
        contribute bands only. All rasters must share the same grid.
        """
        seen = list(self.band_names)
        duplicates = set()
        for other in others:
            duplicates |= set(seen) & set(other.band_names)
            seen.extend(other.band_names)
        if duplicates:
            raise DuplicateBandName(duplicates)
        merged = xr.merge([self._data] + [other.data for other in others],
                          join='exact', combine_attrs='override')
        return self._derive(merged[seen])

    def clip(self, domain) -> 'GridCellRaster':
        """Mask pixels whose centres fall outside ``domain`` (grid shape is kept)."""
        clipped = self._data.rio.clip([domain.geometry], crs=domain.crs,
                                      drop=False, all_touched=False)
        return self._derive(clipped)

    def compute(self) -> 'GridCellRaster':
        """Materialise lazily computed bands."""
        return self._derive(self._data.compute())

    def values(self, band: str) -> np.ndarray:
        return np.asarray(self[band].values)

    def to_xarray(self) -> xr.Dataset:
        """Dataset with the raster properties written as attributes."""
        ds = self._data.copy()
        ds.attrs = {**ds.attrs, **{k: v for k, v in self._properties.items() if v is not None}}
        if self._time is not None:
            ds.attrs['time'] = self._time.isoformat()
        return ds


class RasterTimeSeries:
    """Ordered, time-indexed stack of rasters sharing one band schema."""

    def __init__(self, data: xr.Dataset, crs: str = DEFAULT_CRS):
        if TIME_DIM not in data.dims:
            raise ValueError(f"RasterTimeSeries requires a '{TIME_DIM}' dimension")
        times = _time_index(data)
        if not times.is_monotonic_increasing:
            data = data.sortby(TIME_DIM)
        self._data = _with_spatial_ref(data.transpose(TIME_DIM, Y_DIM, X_DIM), crs)

    @classmethod
    def from_rasters(cls, rasters: Sequence[GridCellRaster]) -> 'RasterTimeSeries':
        """Stack dated rasters into a series; their properties become time coordinates."""
        rasters = list(rasters)
        if not rasters:
            raise ValueError("Cannot build a RasterTimeSeries from zero rasters")
        if any(r.time is None for r in rasters):
            raise ValueError("Every raster in a series needs an acquisition time")
        schema = rasters[0].band_names
        for raster in rasters[1:]:
            if raster.band_names != schema:
                raise ValueError(f"Band schema mismatch: {raster.band_names} != {schema}")

        times = pd.DatetimeIndex([r.time for r in rasters], name=TIME_DIM)
        ds = xr.concat([r.data for r in rasters], dim=times)
        property_names = sorted(set().union(*(r.properties.keys() for r in rasters)))
        for name in property_names:
            ds = ds.assign_coords({name: (TIME_DIM, [r.properties.get(name) for r in rasters])})
        return cls(ds, crs=rasters[0].crs)

    def __repr__(self):
        return f"RasterTimeSeries(n={len(self)}, bands={self.band_names})"

    @property
    def data(self) -> xr.Dataset:
        return self._data

    @property
    def crs(self) -> str:
        return self._data.rio.crs.to_string()

    @property
    def band_names(self) -> List[str]:
        return list(self._data.data_vars)

    @property
    def property_names(self) -> List[str]:
        return [name for name, coord in self._data.coords.items()
                if name != TIME_DIM and coord.dims == (TIME_DIM,)]

    @property
    def times(self) -> pd.DatetimeIndex:
        return _time_index(self._data)

    def __len__(self) -> int:
        return int(self._data.sizes[TIME_DIM])

    def __getitem__(self, index: int) -> GridCellRaster:
        property_names = self.property_names
        step = self._data.isel({TIME_DIM: index})
        properties = {name: _to_python(step[name].values[()]) for name in property_names}
        time = self.times[index]
        step = step.drop_vars([TIME_DIM] + property_names)
        return GridCellRaster(step, time=time, properties=properties, crs=self.crs)

    def __iter__(self) -> Iterator[GridCellRaster]:
        for index in range(len(self)):
            yield self[index]

    def first(self) -> GridCellRaster:
        if len(self) == 0:
            raise EmptyAggregationInput('series', 'first', 'series is empty')
        return self[0]

    def _subset(self, indices: np.ndarray) -> 'RasterTimeSeries':
        return RasterTimeSeries(self._data.isel({TIME_DIM: indices}), crs=self.crs)

    def filter_calendar(self, field: str, start: int, end: Optional[int] = None) -> 'RasterTimeSeries':
        """Keep timesteps whose calendar ``field`` lies in [start, end].

        ``end`` defaults to ``start``. For ``month`` a start after the end wraps
        around the year end (e.g. 11..2 is Nov-Feb).
        """
        if field not in CALENDAR_FIELDS:
            raise ValueError(f"Unsupported calendar field '{field}'. Use one of {CALENDAR_FIELDS}")
        end = start if end is None else end
        values = np.asarray(getattr(self.times, field))
        if field == 'month' and start > end:
            mask = (values >= start) | (values <= end)
        else:
            mask = (values >= start) & (values <= end)
        return self._subset(np.flatnonzero(mask))

    def filter_month(self, month: int) -> 'RasterTimeSeries':
        return self.filter_calendar('month', month)

    def filter_year(self, year: int) -> 'RasterTimeSeries':
        return self.filter_calendar('year', year)

    def filter_date(self, start, end) -> 'RasterTimeSeries':
        """Keep timesteps in the half-open range [start, end)."""
        times = self.times
        mask = (times >= pd.Timestamp(start)) & (times < pd.Timestamp(end))
        return self._subset(np.flatnonzero(mask))

    def select(self, bands: Sequence[str], rename: Optional[Sequence[str]] = None) -> 'RasterTimeSeries':
        bands = list(bands)
        for band in bands:
            if band not in self._data.data_vars:
                raise UnknownBand(band, None, self.band_names)
        ds = self._data[bands]
        if rename is not None:
            rename = list(rename)
            if len(rename) != len(bands):
                raise ValueError(f"Expected {len(bands)} band names, got {len(rename)}")
            ds = ds.rename(dict(zip(bands, rename)))
        return RasterTimeSeries(ds, crs=self.crs)

    def add_month_band(self, name: str = 'month') -> 'RasterTimeSeries':
        """Add a band holding each timestep's calendar month."""
        if name in self._data.data_vars:
            raise DuplicateBandName([name])
        ds = self._data.drop_vars(name, errors='ignore')
        template = ds[self.band_names[0]]
        months = xr.DataArray(np.asarray(self.times.month, dtype=float), dims=TIME_DIM,
                              coords={TIME_DIM: ds[TIME_DIM]})
        return RasterTimeSeries(ds.assign({name: months.broadcast_like(template)}), crs=self.crs)

    def mean(self) -> GridCellRaster:
        """Per-pixel, per-band mean over time, ignoring missing values."""
        if len(self) == 0:
            raise EmptyAggregationInput('series', 'mean', 'series is empty')
        ds = self._data.drop_vars(self.property_names)
        return GridCellRaster(ds.mean(TIME_DIM, skipna=True, keep_attrs=True), crs=self.crs)
