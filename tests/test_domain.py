"""
Tests for building the study domain from a region catalog.
"""

import geopandas as gpd
import pytest
from shapely.geometry import box

from climate_stack.shared.exceptions import ConfigurationError
from climate_stack.shared.raster.domain import Domain, load_domain


@pytest.fixture
def catalog():
    return gpd.GeoDataFrame(
        {"DomainName": ["Great Basin", "Pacific Southwest", "Atlantic Neotropical"]},
        geometry=[box(-120, 36, -110, 44), box(-124, 32, -116, 40), box(-82, 18, -64, 28)],
        crs="EPSG:4326",
    )


class TestDomain:

    def test_union_of_selected_regions(self, catalog):
        domain = Domain.from_catalog(catalog, ["Great Basin", "Pacific Southwest"])

        assert domain.names == ("Great Basin", "Pacific Southwest")
        assert domain.bounds == (-124.0, 32.0, -110.0, 44.0)
        assert domain.crs == "EPSG:4326"

    def test_partially_missing_names(self, catalog):
        domain = Domain.from_catalog(catalog, ["Great Basin", "Northern Rockies"])

        assert domain.names == ("Great Basin",)

    def test_no_matching_names(self, catalog):
        with pytest.raises(ConfigurationError):
            Domain.from_catalog(catalog, ["Northern Rockies"])

    def test_missing_name_field(self, catalog):
        with pytest.raises(ConfigurationError):
            Domain.from_catalog(catalog, ["Great Basin"], name_field="NAME")

    def test_empty_geometry(self):
        with pytest.raises(ValueError):
            Domain(geometry=box(0, 0, 1, 1).intersection(box(2, 2, 3, 3)))

    def test_to_crs(self):
        domain = Domain.from_bounds(-105.0, 39.0, -104.0, 40.0).to_crs("EPSG:5070")

        assert domain.crs == "EPSG:5070"
        assert domain.bounds[0] < 0 < domain.bounds[3]

    def test_load_from_file(self, tmp_path, catalog):
        path = tmp_path / "neon_domains.geojson"
        catalog.to_file(path, driver="GeoJSON")

        domain = load_domain(path, ["Pacific Southwest"])

        assert domain.bounds == pytest.approx((-124.0, 32.0, -116.0, 40.0))

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_domain(tmp_path / "missing.shp")
