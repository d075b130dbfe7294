"""
Pipeline interface contracts for reporting processing outcomes.

A run never returns a silently incomplete collection: every unit that did not
produce a result is listed as a ``FailedUnitContract`` with its cause.
"""

from datetime import datetime
from enum import Enum
from typing import List, Dict, Optional
from pydantic import BaseModel, Field


class PipelineStage(str, Enum):
    """Pipeline processing stages."""
    MONTHLY_MEANS = "monthly_means"
    ANNUAL_EXTREMES = "annual_extremes"
    COMBINE = "combine"
    ZONAL_STATS = "zonal_stats"
    EXPORT = "export"


class FailedUnitContract(BaseModel):
    """A unit of work (one month, one variable-year, one year) that failed."""
    stage: PipelineStage
    unit: str = Field(..., description="Unit identifier, e.g. 'month=7' or 'pr:year=1987'")
    error_type: str = Field(..., description="Exception class name")
    message: str = Field(default="")
    attempts: int = Field(default=1, ge=0)
    retryable: bool = Field(default=False)


class ProcessingReport(BaseModel):
    """Summary of a workflow run: completed units plus attributed failures."""
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    completed_units: Dict[PipelineStage, List[str]] = Field(default_factory=dict)
    failures: List[FailedUnitContract] = Field(default_factory=list)
    exported_files: List[str] = Field(default_factory=list)

    def record_success(self, stage: PipelineStage, unit: str):
        self.completed_units.setdefault(stage, []).append(unit)

    def record_failure(self, failure: FailedUnitContract):
        self.failures.append(failure)

    def failures_for(self, stage: PipelineStage) -> List[FailedUnitContract]:
        return [f for f in self.failures if f.stage == stage]

    @property
    def is_complete(self) -> bool:
        """True when no unit failed."""
        return not self.failures

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()
