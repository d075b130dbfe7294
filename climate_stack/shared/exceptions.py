"""
Exception hierarchy for the climate disturbance stack.

Structural errors signal a configuration or invariant violation and are never
retried. ``RemoteComputeFailure`` is the transient kind: the task engine
retries it with backoff before reporting the unit as failed.
"""

from typing import Any, Optional


class ClimateStackError(Exception):
    """Base class for all errors raised by the package."""
    pass


class ConfigurationError(ClimateStackError):
    """Raised when configuration loading or validation fails."""
    pass


class StructuralError(ClimateStackError):
    """Non-retryable error caused by malformed inputs."""
    pass


class EmptyAggregationInput(StructuralError):
    """A required filter produced zero timesteps."""

    def __init__(self, unit: str, value: Any, detail: Optional[str] = None):
        self.unit = unit
        self.value = value
        message = f"No timesteps available for {unit} {value}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class MisalignedSequence(StructuralError):
    """Per-variable year sequences disagree in length or order."""
    pass


class DuplicateBandName(StructuralError):
    """A band union would produce two bands with the same name."""

    def __init__(self, bands):
        self.bands = sorted(bands)
        super().__init__(f"Duplicate band name(s) in band union: {self.bands}")


class UnknownBand(StructuralError):
    """A requested band is absent from a timestep."""

    def __init__(self, band: str, timestep: Any = None, available=None):
        self.band = band
        self.timestep = timestep
        self.available = list(available) if available is not None else []
        where = f" at timestep {timestep}" if timestep is not None else ""
        super().__init__(
            f"Band '{band}' not found{where}. Available bands: {self.available}"
        )


class RemoteComputeFailure(ClimateStackError):
    """The raster engine request failed or timed out."""
    pass
