#!/usr/bin/env python3
"""
Disturbance stack workflow.

Runs the full data wrangling pass over a TerraClimate series:

1. monthly climatological means (one unit per month),
2. annual extrema with month of occurrence (one unit per variable and year),
3. per-year combination of the variable extrema (waits for that year's units),
4. zonal statistics at the buffered validation points,

then optionally exports the products. All units share one ``TaskEngine`` so
independent work overlaps; failures are attributed to their unit in the
returned ``ProcessingReport`` and never abort sibling units.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

import geopandas as gpd
import pandas as pd

from climate_stack.config import ClimateStackConfig
from climate_stack.extremes.core.annual_extremes import compute_year_extremum
from climate_stack.extremes.core.stack_combiner import combine_year
from climate_stack.means.core.monthly_climatology import compute_month_mean
from climate_stack.means.core.multiprocessing_engine import (
    MultiprocessingConfig,
    TaskEngine,
    TaskResult,
    WorkUnit,
)
from climate_stack.means.utils.io_util import export_rasters, export_table, open_terraclimate_series
from climate_stack.means.utils.rich_progress import RichProgressTracker
from climate_stack.metrics.core.zonal_stats import extract_zonal_stats
from climate_stack.metrics.utils.buffering import buffer_points, points_to_features
from climate_stack.shared.contracts.pipeline_interface import (
    FailedUnitContract,
    PipelineStage,
    ProcessingReport,
)
from climate_stack.shared.exceptions import ClimateStackError
from climate_stack.shared.raster.domain import Domain, load_domain
from climate_stack.shared.raster.series import GridCellRaster, RasterTimeSeries

logger = logging.getLogger(__name__)

STAGES = ('means', 'extremes', 'points')


def month_unit(month: int) -> str:
    return f"month={month}"


def extremum_unit(variable: str, year: int) -> str:
    return f"{variable}:year={year}"


def combine_unit(year: int) -> str:
    return f"combine:year={year}"


ZONAL_UNIT = "zonal_stats"


@dataclass
class WorkflowResult:
    """Products of a workflow run; missing entries are listed in ``report.failures``."""
    report: ProcessingReport
    monthly_means: List[GridCellRaster] = field(default_factory=list)
    annual_extrema: Dict[str, List[GridCellRaster]] = field(default_factory=dict)
    combined: List[GridCellRaster] = field(default_factory=list)
    zonal_stats: Optional[pd.DataFrame] = None


class DisturbanceStackWorkflow:
    """
    Orchestrates the stack products for one configuration.

    ``series``, ``domain`` and ``features`` may be supplied directly (tests,
    notebooks); otherwise they are loaded from the configured paths.
    """

    def __init__(self,
                 config: ClimateStackConfig,
                 series: Optional[RasterTimeSeries] = None,
                 domain: Optional[Domain] = None,
                 features: Optional[gpd.GeoDataFrame] = None):
        self.config = config
        self._series = series
        self._domain = domain
        self._features = features
        self.variables = config.processing.climate_variables()
        self.engine: Optional[TaskEngine] = None
        self._units: List[WorkUnit] = []
        self._domain_resolved = domain is not None

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    @property
    def series(self) -> RasterTimeSeries:
        if self._series is None:
            processing = self.config.processing
            domain = self.domain
            self._series = open_terraclimate_series(
                self.config.paths.input_data_dir,
                [v.name for v in self.variables],
                processing.start_year,
                processing.end_year,
                bounds=domain.to_crs('EPSG:4326').bounds if domain is not None else None,
            )
        return self._series

    @property
    def domain(self) -> Optional[Domain]:
        if self._domain_resolved:
            return self._domain
        self._domain_resolved = True
        if self.config.paths.domain_catalog:
            self._domain = load_domain(self.config.paths.domain_catalog,
                                       self.config.domain.names,
                                       self.config.domain.name_field)
        else:
            logger.warning("⚠️  No domain catalog configured, products will not be clipped")
        return self._domain

    @property
    def features(self) -> gpd.GeoDataFrame:
        if self._features is None:
            zonal = self.config.zonal
            points = points_to_features(zonal.points)
            self._features = buffer_points(points, zonal.buffer_radius, bounds=zonal.buffer_bounds)
        return self._features

    # ------------------------------------------------------------------
    # Units
    # ------------------------------------------------------------------

    @staticmethod
    def _storing(store: Dict[str, object], key: str, func: Callable, *args) -> Callable[[], object]:
        def run():
            value = func(*args)
            store[key] = value
            return value
        return run

    def _month_mean(self, month: int, domain: Optional[Domain]) -> GridCellRaster:
        return compute_month_mean(self.series.select([v.name for v in self.variables]), month, domain)

    def _combine_for_year(self, store: Dict[str, object], year: int, domain: Optional[Domain]) -> GridCellRaster:
        per_variable = {v: [store[extremum_unit(v.name, year)]] for v in self.variables}
        return combine_year(per_variable, 0, domain=domain, years=[year]).compute()

    def build_units(self, stages: Sequence[str], store: Dict[str, object]) -> Dict[str, PipelineStage]:
        """Create the work units for ``stages``; returns unit id -> stage."""
        unknown = [s for s in stages if s not in STAGES]
        if unknown:
            raise ValueError(f"Unknown stage(s) {unknown}; expected a subset of {STAGES}")

        processing = self.config.processing
        series = self.series
        domain = self.domain
        units: List[WorkUnit] = []
        stage_of: Dict[str, PipelineStage] = {}

        if 'means' in stages:
            for month in sorted(set(processing.months)):
                uid = month_unit(month)
                units.append(WorkUnit(uid, self._storing(store, uid, self._month_mean, month, domain)))
                stage_of[uid] = PipelineStage.MONTHLY_MEANS

        if 'extremes' in stages:
            for year in processing.years:
                year_units = []
                for variable in self.variables:
                    uid = extremum_unit(variable.name, year)
                    units.append(WorkUnit(uid, self._storing(store, uid, compute_year_extremum,
                                                             series, variable, year)))
                    stage_of[uid] = PipelineStage.ANNUAL_EXTREMES
                    year_units.append(uid)
                uid = combine_unit(year)
                units.append(WorkUnit(uid, self._storing(store, uid, self._combine_for_year, store, year, domain),
                                      depends_on=tuple(year_units)))
                stage_of[uid] = PipelineStage.COMBINE

        if 'points' in stages:
            stats_config = self.config.zonal.stats_config()
            units.append(WorkUnit(ZONAL_UNIT, self._storing(store, ZONAL_UNIT, extract_zonal_stats,
                                                            series, self.features, stats_config)))
            stage_of[ZONAL_UNIT] = PipelineStage.ZONAL_STATS

        self._units = units
        return stage_of

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _engine_config(self) -> MultiprocessingConfig:
        processing = self.config.processing
        return MultiprocessingConfig(
            max_workers=processing.max_workers,
            max_retries=processing.max_retries,
            timeout_per_task=processing.timeout_per_task,
            backoff_seconds=processing.backoff_seconds,
        )

    @staticmethod
    def _record(report: ProcessingReport, stage: PipelineStage, outcome: TaskResult):
        if outcome.success:
            report.record_success(stage, outcome.task_id)
        else:
            report.record_failure(FailedUnitContract(
                stage=stage,
                unit=outcome.task_id,
                error_type=outcome.error_type or "Error",
                message=outcome.error or "",
                attempts=outcome.attempts,
                retryable=outcome.retryable,
            ))

    def run(self, stages: Sequence[str] = STAGES, export: Optional[bool] = None) -> WorkflowResult:
        """
        Run the requested stages and, when enabled, export the products.

        Args:
            stages: subset of ``('means', 'extremes', 'points')``
            export: override ``config.export.enabled``

        Returns:
            WorkflowResult with the products and the processing report.
        """
        report = ProcessingReport()
        result = WorkflowResult(report=report)
        store: Dict[str, object] = {}

        logger.info(f"🌍 Disturbance stack run: stages={list(stages)}, "
                    f"variables={[v.name for v in self.variables]}, "
                    f"years={self.config.processing.start_year}-{self.config.processing.end_year}")

        stage_of = self.build_units(stages, store)

        tracker = None
        if self.config.processing.use_rich_progress:
            tracker = RichProgressTracker("Climate Disturbance Stack")
            tracker.start()
            for stage in dict.fromkeys(stage_of.values()):
                tracker.add_stage(stage.value, total=sum(1 for s in stage_of.values() if s == stage))
        self.engine = TaskEngine(self._engine_config(), rich_tracker=tracker,
                                 progress_stage=lambda uid: stage_of[uid].value)
        try:
            outcomes = self.engine.run(self._units)
        finally:
            if tracker:
                for stage in tracker.stages:
                    tracker.finish_stage(stage)
                tracker.stop()

        for uid, outcome in outcomes.items():
            self._record(report, stage_of[uid], outcome)

        result.monthly_means = [outcomes[uid].result for uid in outcomes
                                if stage_of[uid] == PipelineStage.MONTHLY_MEANS and outcomes[uid].success]
        for variable in self.variables:
            extrema = [outcomes[extremum_unit(variable.name, year)]
                       for year in self.config.processing.years
                       if extremum_unit(variable.name, year) in outcomes]
            if extrema:
                result.annual_extrema[variable.name] = [o.result for o in extrema if o.success]
        result.combined = [outcomes[uid].result for uid in outcomes
                           if stage_of[uid] == PipelineStage.COMBINE and outcomes[uid].success]
        if ZONAL_UNIT in outcomes and outcomes[ZONAL_UNIT].success:
            result.zonal_stats = outcomes[ZONAL_UNIT].result

        do_export = self.config.export.enabled if export is None else export
        if do_export:
            self.export(result)

        report.finished_at = datetime.now()
        self._log_report(report)
        return result

    def export(self, result: WorkflowResult):
        """Write the finished products; export failures are reported, not raised."""
        export_config = self.config.export
        output_dir = self.config.paths.output_base_dir
        report = result.report

        jobs = []
        if result.monthly_means:
            jobs.append(("monthly_means", lambda: export_rasters(
                result.monthly_means, output_dir, export_config.folder,
                export_config.monthly_means_name, export_config.scale, export_config.crs)))
        if result.combined:
            jobs.append(("combined", lambda: export_rasters(
                result.combined, output_dir, export_config.folder,
                export_config.combined_name, export_config.scale, export_config.crs)))
        if result.zonal_stats is not None:
            jobs.append(("zonal_table", lambda: [export_table(
                result.zonal_stats, output_dir, export_config.folder,
                export_config.table_description, export_config.table_format)]))

        for name, job in jobs:
            try:
                files = job()
            except (OSError, ValueError, ClimateStackError) as e:
                logger.error(f"❌ Export of {name} failed: {e}")
                report.record_failure(FailedUnitContract(
                    stage=PipelineStage.EXPORT, unit=name, error_type=type(e).__name__, message=str(e)))
                continue
            report.exported_files.extend(files)
            report.record_success(PipelineStage.EXPORT, name)

    @staticmethod
    def _log_report(report: ProcessingReport):
        completed = sum(len(units) for units in report.completed_units.values())
        logger.info(f"📊 Completed {completed} units, {len(report.failures)} failed, "
                    f"{len(report.exported_files)} files exported")
        for failure in report.failures:
            logger.warning(f"  ❌ [{failure.stage.value}] {failure.unit}: {failure.error_type}: {failure.message}")
        if report.is_complete:
            logger.info("✅ Run complete")
