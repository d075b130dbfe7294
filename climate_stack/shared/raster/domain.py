"""
Study domain handling.

The study domain is the union of named regions selected from a polygon
catalog (NEON ecological domains for the western US by default). It is only
ever used to clip rasters.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence, Tuple, Union

import geopandas as gpd
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from climate_stack.shared.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_DOMAIN_FIELD = "DomainName"

# NEON domains covering the western US study area
WESTERN_NEON_DOMAINS: Tuple[str, ...] = (
    "Northern Rockies",
    "Great Basin",
    "Pacific Northwest",
    "Pacific Southwest",
    "Desert Southwest",
    "Southern Rockies / Colorado Plateau",
)


@dataclass(frozen=True)
class Domain:
    """A non-empty clipping region with its CRS."""
    geometry: BaseGeometry
    crs: str = "EPSG:4326"
    names: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if self.geometry is None or self.geometry.is_empty:
            raise ValueError("Domain geometry must not be empty")

    @classmethod
    def from_catalog(cls, catalog: gpd.GeoDataFrame, names: Sequence[str],
                     name_field: str = DEFAULT_DOMAIN_FIELD) -> 'Domain':
        """Union the catalog polygons whose ``name_field`` is one of ``names``."""
        if name_field not in catalog.columns:
            raise ConfigurationError(f"Column '{name_field}' not found in domain catalog")

        selected = catalog[catalog[name_field].isin(list(names))]
        missing = sorted(set(names) - set(selected[name_field]))
        if missing:
            logger.warning(f"Domain names not found in catalog: {missing}")
        if selected.empty:
            raise ConfigurationError(f"None of the domain names {list(names)} matched the catalog")

        crs = selected.crs.to_string() if selected.crs is not None else "EPSG:4326"
        geometry = selected.geometry.union_all()
        logger.info(f"Built study domain from {len(selected)} region(s)")
        return cls(geometry=geometry, crs=crs, names=tuple(selected[name_field]))

    @classmethod
    def from_bounds(cls, min_x: float, min_y: float, max_x: float, max_y: float,
                    crs: str = "EPSG:4326") -> 'Domain':
        return cls(geometry=box(min_x, min_y, max_x, max_y), crs=crs)

    def to_crs(self, crs: str) -> 'Domain':
        reprojected = gpd.GeoSeries([self.geometry], crs=self.crs).to_crs(crs)
        return Domain(geometry=reprojected.iloc[0], crs=crs, names=self.names)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return self.geometry.bounds


def load_domain(catalog_path: Union[str, Path], names: Sequence[str] = WESTERN_NEON_DOMAINS,
                name_field: str = DEFAULT_DOMAIN_FIELD) -> Domain:
    """Read a polygon catalog from disk and build the study domain."""
    catalog_path = Path(catalog_path)
    if not catalog_path.exists():
        raise FileNotFoundError(f"Domain catalog not found: {catalog_path}")
    logger.info(f"Loading domain catalog from: {catalog_path}")
    catalog = gpd.read_file(catalog_path)
    return Domain.from_catalog(catalog, names, name_field=name_field)
