#!/usr/bin/env python3
"""
Configuration Management for the Climate Disturbance Stack

Settings for data paths, processing, the study domain, validation point zonal
statistics and product export. Defaults reproduce the western NEON domain
TerraClimate run; a YAML file and environment variables override them.

Precedence (lowest to highest): defaults, YAML file, environment variables.
There is no global configuration instance: build a ``ClimateStackConfig`` with
``load_config`` and pass it to the workflow.
"""

import os
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import ValidationError

from climate_stack.shared.contracts.climate_data import (
    ClimateVariable,
    VARIABLE_CATALOG,
    ZonalStatsConfig,
    get_variable,
)
from climate_stack.shared.exceptions import ConfigurationError
from climate_stack.shared.raster.domain import DEFAULT_DOMAIN_FIELD, WESTERN_NEON_DOMAINS

logger = logging.getLogger(__name__)


def config_search_paths() -> List[Path]:
    """Config files looked up when no explicit path is given, in order."""
    return [
        Path.cwd() / "climate_stack.yaml",
        Path.home() / ".climate_stack" / "config.yaml",
    ]


DEFAULT_POINTS = [
    {"plot_id": "BoulderCO", "lon": -105.24249040058604, "lat": 40.00981039217258},
    {"plot_id": "JacksonWY", "lon": -110.786763, "lat": 43.432451},
    {"plot_id": "BellinghamWA", "lon": -122.486757, "lat": 48.733972},
    {"plot_id": "StanfordCA", "lon": -122.170020, "lat": 37.428193},
]


@dataclass
class DataPaths:
    """Data path configuration."""
    # None reads the TerraClimate OPeNDAP aggregation
    input_data_dir: Optional[str] = None
    output_base_dir: str = "output"
    domain_catalog: Optional[str] = None

    def __post_init__(self):
        if self.input_data_dir is not None:
            self.input_data_dir = os.path.expandvars(str(self.input_data_dir))
        self.output_base_dir = os.path.expandvars(str(self.output_base_dir))
        if self.domain_catalog is not None:
            self.domain_catalog = os.path.expandvars(str(self.domain_catalog))


@dataclass
class ProcessingConfig:
    """Processing configuration settings."""
    variables: List[Any] = field(default_factory=lambda: [v.name for v in VARIABLE_CATALOG])
    start_year: int = 1958
    end_year: int = 2021
    months: List[int] = field(default_factory=lambda: list(range(1, 13)))

    # Task engine settings
    max_workers: int = 4
    max_retries: int = 2
    timeout_per_task: Optional[float] = 300.0
    backoff_seconds: float = 1.0
    use_rich_progress: bool = False

    @property
    def years(self) -> List[int]:
        return list(range(self.start_year, self.end_year + 1))

    def climate_variables(self) -> List[ClimateVariable]:
        """Resolve configured variables (catalog names or full definitions)."""
        resolved = []
        for entry in self.variables:
            try:
                if isinstance(entry, ClimateVariable):
                    resolved.append(entry)
                elif isinstance(entry, str):
                    resolved.append(get_variable(entry))
                else:
                    resolved.append(ClimateVariable(**entry))
            except (KeyError, TypeError, ValidationError) as e:
                raise ConfigurationError(f"Invalid variable entry {entry!r}: {e}") from e
        return resolved


@dataclass
class DomainConfig:
    """Study domain: named regions of the domain catalog."""
    names: List[str] = field(default_factory=lambda: list(WESTERN_NEON_DOMAINS))
    name_field: str = DEFAULT_DOMAIN_FIELD


@dataclass
class ZonalConfig:
    """Validation point zonal statistics settings."""
    points: List[Dict[str, Any]] = field(default_factory=lambda: [dict(p) for p in DEFAULT_POINTS])
    buffer_radius: float = 15.0
    buffer_bounds: bool = True
    reducer: str = "mean"
    scale: Optional[float] = 30.0
    crs: Optional[str] = None
    bands: Optional[List[str]] = field(default_factory=lambda: [v.name for v in VARIABLE_CATALOG])
    datetime_name: str = "month"
    datetime_format: str = "YYYYMM"

    def stats_config(self) -> ZonalStatsConfig:
        """Reduction settings as the zonal statistics contract."""
        try:
            return ZonalStatsConfig(
                reducer=self.reducer,
                scale=self.scale,
                crs=self.crs,
                bands=self.bands,
                datetime_name=self.datetime_name,
                datetime_format=self.datetime_format,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid zonal statistics settings: {e}") from e


@dataclass
class ExportConfig:
    """Product export settings."""
    enabled: bool = True
    folder: str = "GEE_Exports"
    scale: float = 4638.3
    crs: str = "EPSG:5070"
    monthly_means_name: str = "MonthlyMeans_Month{month}"
    combined_name: str = "AllVariables_{year}"
    table_description: str = "locations_pull_raw_terra_data"
    table_format: str = "CSV"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_file: Optional[str] = None
    console_output: bool = True


@dataclass
class ClimateStackConfig:
    """Main configuration class combining all settings."""
    paths: DataPaths = field(default_factory=DataPaths)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    domain: DomainConfig = field(default_factory=DomainConfig)
    zonal: ZonalConfig = field(default_factory=ZonalConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self):
        """Check cross-field constraints; raises ConfigurationError."""
        if self.processing.start_year > self.processing.end_year:
            raise ConfigurationError(
                f"start_year {self.processing.start_year} is after end_year {self.processing.end_year}"
            )
        bad_months = [m for m in self.processing.months if not 1 <= int(m) <= 12]
        if bad_months:
            raise ConfigurationError(f"Months must be in 1..12, got {bad_months}")
        if self.zonal.buffer_radius <= 0:
            raise ConfigurationError(f"buffer_radius must be positive, got {self.zonal.buffer_radius}")
        if self.export.scale <= 0:
            raise ConfigurationError(f"export scale must be positive, got {self.export.scale}")
        names = [v.name for v in self.processing.climate_variables()]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate variables configured: {names}")
        self.zonal.stats_config()
        return self

    def update_from_dict(self, config_dict: Dict[str, Any]):
        """Update configuration sections from a nested dictionary."""
        for section_name, values in (config_dict or {}).items():
            section = getattr(self, section_name, None)
            if section is None or not isinstance(values, dict):
                logger.warning(f"Ignoring unknown configuration section '{section_name}'")
                continue
            for key, value in values.items():
                if hasattr(section, key):
                    setattr(section, key, value)
                else:
                    logger.warning(f"Ignoring unknown setting '{section_name}.{key}'")
        # Re-run path normalisation on the updated values
        self.paths.__post_init__()

    def update_from_environment(self, environ: Optional[Dict[str, str]] = None):
        """Apply ``CLIMATE_STACK_*`` environment variable overrides."""
        environ = os.environ if environ is None else environ

        if "CLIMATE_STACK_INPUT_DIR" in environ:
            self.paths.input_data_dir = environ["CLIMATE_STACK_INPUT_DIR"]

        if "CLIMATE_STACK_OUTPUT_DIR" in environ:
            self.paths.output_base_dir = environ["CLIMATE_STACK_OUTPUT_DIR"]

        if "CLIMATE_STACK_MAX_WORKERS" in environ:
            try:
                self.processing.max_workers = int(environ["CLIMATE_STACK_MAX_WORKERS"])
            except ValueError:
                logger.warning("Invalid CLIMATE_STACK_MAX_WORKERS value, using default")

        if "CLIMATE_STACK_LOG_LEVEL" in environ:
            self.logging.level = environ["CLIMATE_STACK_LOG_LEVEL"].upper()

    def to_dict(self) -> Dict[str, Any]:
        config_dict = asdict(self)
        config_dict["processing"]["variables"] = [
            v if isinstance(v, (str, dict)) else v.model_dump(mode="json")
            for v in self.processing.variables
        ]
        return config_dict

    def save_config(self, config_path: Union[str, Path]):
        """Save current configuration to YAML file."""
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, indent=2, sort_keys=False)

        logger.info(f"Configuration saved to {config_path}")


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    try:
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config from {config_path}: {e}") from e
    if not isinstance(config_data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")
    return config_data


def load_config(config_path: Optional[Union[str, Path]] = None,
                use_environment: bool = True,
                environ: Optional[Dict[str, str]] = None) -> ClimateStackConfig:
    """
    Build a validated configuration.

    Args:
        config_path: explicit YAML file; when omitted the first existing file
            of ``config_search_paths()`` is used, if any
        use_environment: apply ``CLIMATE_STACK_*`` overrides
        environ: environment mapping (defaults to ``os.environ``)

    Raises:
        ConfigurationError: if an explicit file is missing or any setting is invalid
    """
    config = ClimateStackConfig()

    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        config.update_from_dict(_read_yaml(config_path))
        logger.info(f"Loaded configuration from {config_path}")
    else:
        for candidate in config_search_paths():
            if candidate.exists():
                config.update_from_dict(_read_yaml(candidate))
                logger.info(f"Loaded configuration from {candidate}")
                break

    if use_environment:
        config.update_from_environment(environ)

    return config.validate()


def create_sample_config(config_path: Optional[Union[str, Path]] = None) -> Path:
    """Write the default configuration as a starting point for edits."""
    config_path = Path(config_path) if config_path is not None else Path.cwd() / "climate_stack.yaml"
    ClimateStackConfig().save_config(config_path)
    return config_path
