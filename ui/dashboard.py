"""
Rich-based terminal dashboard for the auto-configuration wizard.

Renders engine progress events as progress bars and the decided settings
as a results panel.  Presentation only; no engine logic lives here.
"""
from __future__ import annotations

from typing import Dict

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from autoconfig.constants import (
    ERROR_CANCELLED,
    ERROR_ENCODER_TEST,
    ERROR_INTERNAL,
    ERROR_INVALID_SERVICE,
    ERROR_INVALID_STREAM_SETTINGS,
    ERROR_INVALID_VIDEO_SETTINGS,
    STEP_BANDWIDTH,
    STEP_DEFAULT_SETTINGS,
    STEP_RECORDING_ENCODER,
    STEP_SAVE_SERVICE,
    STEP_SAVE_SETTINGS,
    STEP_STREAM_ENCODER,
)
from autoconfig.events import EventKind, ProgressEvent
from autoconfig.state import ConfigState

console = Console()

STEP_TITLES: Dict[str, str] = {
    STEP_BANDWIDTH: "Testing bandwidth",
    STEP_STREAM_ENCODER: "Testing streaming encoder",
    STEP_RECORDING_ENCODER: "Testing recording encoder",
    STEP_DEFAULT_SETTINGS: "Applying default settings",
    STEP_SAVE_SERVICE: "Saving stream service",
    STEP_SAVE_SETTINGS: "Saving settings",
}

ERROR_MESSAGES: Dict[str, str] = {
    ERROR_INVALID_STREAM_SETTINGS: "Stream settings are invalid or no server could be reached",
    ERROR_INVALID_VIDEO_SETTINGS: "Probe video settings could not be applied",
    ERROR_INVALID_SERVICE: "The streaming service could not be created",
    ERROR_ENCODER_TEST: "The encoder test could not be started",
    ERROR_CANCELLED: "Cancelled",
    ERROR_INTERNAL: "Internal error (see log)",
}


def step_title(label: str) -> str:
    return STEP_TITLES.get(label, label)


def error_message(label: str) -> str:
    return ERROR_MESSAGES.get(label, label)


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------

def print_header() -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]Stream Auto-Configuration[/bold cyan]\n"
            "[dim]Bandwidth, encoder and resolution probing[/dim]",
            border_style="cyan",
        )
    )
    console.print()


def print_inputs(state: ConfigState) -> None:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column(style="dim")
    table.add_column(style="bold")
    table.add_row("Service:", state.service_name or "custom")
    table.add_row("Server:", state.server_display_name)
    table.add_row("Purpose:", state.purpose.value)
    table.add_row("Base resolution:", f"{state.base_resolution[0]}x{state.base_resolution[1]}")
    if state.test_regions:
        table.add_row("Regions:", ", ".join(sorted(r.value for r in state.regions)))
    console.print(Panel(table, title="[bold]Inputs[/bold]", border_style="blue"))


def print_results(state: ConfigState, check_passed=None) -> None:  # noqa: ANN001
    table = Table(title="Decided Settings", box=box.ROUNDED)
    table.add_column("Setting", style="bold")
    table.add_column("Value", justify="right")

    cx, cy = state.ideal_resolution
    num, den = state.ideal_fps
    fps = f"{num}" if den == 1 else f"{num}/{den}"
    table.add_row("Server", f"{state.server_display_name}")
    table.add_row("Bitrate", f"[bold green]{state.ideal_bitrate} kbps[/bold green]")
    table.add_row("Resolution", f"{cx}x{cy}")
    table.add_row("Frame rate", f"{fps} fps")
    table.add_row("Streaming encoder", state.streaming_encoder.value)
    table.add_row(
        "Recording encoder",
        f"{state.recording_encoder.value} ({state.recording_quality.value})",
    )
    if check_passed is not None:
        verdict = "[green]passed[/green]" if check_passed else "[red]failed[/red]"
        table.add_row("Settings check", verdict)
    console.print(table)


# ---------------------------------------------------------------------------
# Progress display
# ---------------------------------------------------------------------------

class ProgressDisplay:
    """One ``rich`` progress bar per engine step, driven by polled events."""

    def __init__(self) -> None:
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(bar_width=40),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=console,
        )
        self._tasks: Dict[str, TaskID] = {}

    def start(self) -> None:
        self.progress.start()

    def stop(self) -> None:
        self.progress.stop()

    def _task(self, label: str) -> TaskID:
        if label not in self._tasks:
            self._tasks[label] = self.progress.add_task(step_title(label), total=100)
        return self._tasks[label]

    def handle(self, event: ProgressEvent) -> None:
        if event.kind is EventKind.STARTING_STEP:
            self._task(event.label)
        elif event.kind in (EventKind.PROGRESS, EventKind.STOPPING_STEP):
            self.progress.update(self._task(event.label), completed=event.percent)
        elif event.kind is EventKind.ERROR:
            self.progress.console.print(f"[red]{error_message(event.label)}[/red]")
