"""
Live progress display for stack runs.

Each pipeline stage (monthly means, annual extremes, combine, zonal stats)
gets its own bar. The task engine advances the bar of a unit's stage as the
unit finishes; failed units are counted separately and shown in the summary
table printed on ``stop()``.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, Optional

import psutil
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    ProgressColumn,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from rich.text import Text


class UnitRateColumn(ProgressColumn):
    """Finished units per second."""

    def render(self, task):
        if not task.speed:
            return Text("-- units/s", style="progress.data.speed")
        return Text(f"{task.speed:.2f} units/s", style="progress.data.speed")


class MemoryColumn(ProgressColumn):
    """Share of system memory in use."""

    def render(self, task):
        try:
            used = psutil.virtual_memory().percent
        except (OSError, RuntimeError):
            return Text("mem --", style="progress.data.speed")
        return Text(f"mem {used:.0f}%", style="progress.data.speed")


@dataclass
class StageProgress:
    stage: str
    total: int
    done: int = 0
    failed: int = 0
    last_unit: str = ""
    started: float = field(default_factory=time.monotonic)
    finished: Optional[float] = None
    task_id: Optional[TaskID] = None

    @property
    def success_rate(self) -> float:
        attempted = self.done + self.failed
        return 100.0 if attempted == 0 else 100.0 * self.done / attempted

    @property
    def elapsed(self) -> float:
        return (self.finished or time.monotonic()) - self.started


class RichProgressTracker:
    """
    One progress bar per pipeline stage.

    Usage:
        tracker = RichProgressTracker("Disturbance stack")
        tracker.start()
        tracker.add_stage("annual_extremes", total=384)
        tracker.advance("annual_extremes", "pr:year=1987")
        tracker.stop()
    """

    def __init__(self, title: str = "Climate Disturbance Stack", console: Optional[Console] = None):
        self.title = title
        self.console = console or Console()
        self.stages: Dict[str, StageProgress] = {}
        self.running = False
        self._started = time.monotonic()
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold cyan]{task.description:<40}"),
            BarColumn(bar_width=30),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            UnitRateColumn(),
            MemoryColumn(),
            console=self.console,
        )

    def start(self):
        self.running = True
        self._started = time.monotonic()
        self.progress.start()
        self.console.print(f"🚀 {self.title}", style="bold green")

    def stop(self):
        """Stop the display and print the per-stage summary."""
        if not self.running:
            return
        self.running = False
        self.progress.stop()
        self.console.print(self.summary_table())
        self.console.print(f"✅ {self.title} finished in {time.monotonic() - self._started:.1f}s",
                           style="bold green")

    def add_stage(self, stage: str, total: int):
        progress = StageProgress(stage=stage, total=total)
        progress.task_id = self.progress.add_task(stage, total=total)
        self.stages[stage] = progress

    def advance(self, stage: str, unit_id: str = "", failed: bool = False):
        """Count one finished unit of ``stage``; unknown stages are ignored."""
        progress = self.stages.get(stage)
        if progress is None:
            return
        if failed:
            progress.failed += 1
        else:
            progress.done += 1
        progress.last_unit = unit_id
        label = f"{stage} ({unit_id})" if unit_id else stage
        self.progress.update(progress.task_id, advance=1, description=label)

    def finish_stage(self, stage: str):
        progress = self.stages.get(stage)
        if progress is None:
            return
        progress.finished = time.monotonic()
        icon = "✅" if progress.failed == 0 else "⚠️ "
        self.progress.update(progress.task_id, completed=progress.total,
                             description=f"{icon} {stage}")

    def summary_table(self) -> Table:
        table = Table(title="📊 Stages", header_style="bold magenta")
        table.add_column("Stage", style="cyan")
        table.add_column("Done", justify="right")
        table.add_column("Failed", justify="right")
        table.add_column("Success", justify="right")
        table.add_column("Time", justify="right")

        for progress in self.stages.values():
            style = "green" if progress.failed == 0 else ("yellow" if progress.success_rate >= 80 else "red")
            table.add_row(
                progress.stage,
                f"{progress.done}/{progress.total}",
                str(progress.failed),
                Text(f"{progress.success_rate:.0f}%", style=style),
                f"{progress.elapsed:.1f}s",
            )
        return table
