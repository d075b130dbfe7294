"""
Tests for configuration loading, validation and overrides.
"""

import pytest
import yaml

from climate_stack.config import (
    ClimateStackConfig,
    create_sample_config,
    load_config,
)
from climate_stack.shared.contracts.climate_data import Direction
from climate_stack.shared.exceptions import ConfigurationError


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """No config files on the search path."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    return tmp_path


def write_yaml(path, data):
    with open(path, "w") as f:
        yaml.safe_dump(data, f)
    return path


class TestConfigDefaults:

    def test_defaults_reproduce_western_run(self, isolated):
        config = load_config(environ={})

        assert [v.name for v in config.processing.climate_variables()] == \
            ["tmmx", "vpd", "def", "soil", "pr", "pdsi"]
        assert config.processing.years[0] == 1958
        assert config.processing.years[-1] == 2021
        assert config.processing.months == list(range(1, 13))
        assert config.zonal.buffer_radius == 15.0
        assert config.zonal.buffer_bounds
        assert config.export.scale == 4638.3
        assert config.export.folder == "GEE_Exports"
        assert len(config.domain.names) == 6

    def test_stats_config(self):
        stats = ClimateStackConfig().zonal.stats_config()

        assert stats.scale == 30.0
        assert stats.datetime_name == "month"
        assert stats.datetime_format == "YYYYMM"


class TestConfigLoading:

    def test_yaml_overrides_defaults(self, isolated):
        path = write_yaml(isolated / "custom.yaml", {
            "processing": {"variables": ["pr", "tmmx"], "start_year": 2000, "end_year": 2001},
            "export": {"enabled": False},
        })

        config = load_config(path, environ={})

        assert config.processing.years == [2000, 2001]
        assert [v.name for v in config.processing.climate_variables()] == ["pr", "tmmx"]
        assert not config.export.enabled

    def test_search_path_is_used(self, isolated):
        write_yaml(isolated / "climate_stack.yaml", {"processing": {"max_workers": 7}})

        assert load_config(environ={}).processing.max_workers == 7

    def test_environment_overrides_file(self, isolated):
        path = write_yaml(isolated / "custom.yaml", {"processing": {"max_workers": 2}})
        environ = {
            "CLIMATE_STACK_MAX_WORKERS": "6",
            "CLIMATE_STACK_OUTPUT_DIR": str(isolated / "out"),
            "CLIMATE_STACK_LOG_LEVEL": "debug",
        }

        config = load_config(path, environ=environ)

        assert config.processing.max_workers == 6
        assert config.paths.output_base_dir == str(isolated / "out")
        assert config.logging.level == "DEBUG"

    def test_invalid_worker_override_is_ignored(self, isolated):
        config = load_config(environ={"CLIMATE_STACK_MAX_WORKERS": "lots"})

        assert config.processing.max_workers == 4

    def test_missing_explicit_file(self, isolated):
        with pytest.raises(ConfigurationError):
            load_config(isolated / "nope.yaml", environ={})

    def test_non_mapping_file(self, isolated):
        path = isolated / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError):
            load_config(path, environ={})

    def test_unknown_keys_are_ignored(self, isolated):
        path = write_yaml(isolated / "custom.yaml", {"processing": {"colour": "blue"}, "extra": {"a": 1}})

        config = load_config(path, environ={})

        assert not hasattr(config.processing, "colour")

    def test_save_and_reload(self, isolated):
        path = create_sample_config(isolated / "sample.yaml")

        config = load_config(path, environ={})

        assert config.to_dict() == ClimateStackConfig().to_dict()


class TestConfigValidation:

    def test_years_must_be_ordered(self, isolated):
        path = write_yaml(isolated / "bad.yaml", {"processing": {"start_year": 2001, "end_year": 2000}})

        with pytest.raises(ConfigurationError):
            load_config(path, environ={})

    @pytest.mark.parametrize("section, values", [
        ("processing", {"months": [0, 13]}),
        ("zonal", {"buffer_radius": 0}),
        ("zonal", {"reducer": "mode"}),
        ("export", {"scale": -1}),
        ("processing", {"variables": ["pr", "pr"]}),
        ("processing", {"variables": ["swe"]}),
    ])
    def test_invalid_settings(self, section, values):
        config = ClimateStackConfig()
        config.update_from_dict({section: values})

        with pytest.raises(ConfigurationError):
            config.validate()

    def test_custom_variable_definition(self):
        config = ClimateStackConfig()
        config.processing.variables = ["pr", {"name": "aet", "direction": "min", "units": "mm"}]

        variables = config.validate().processing.climate_variables()

        assert variables[1].name == "aet"
        assert variables[1].direction == Direction.SEEK_MIN
