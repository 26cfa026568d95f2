import json
import sys
import threading
from typing import Optional, TextIO
from rich.console import Console
from rich.markup import escape
from ffwatch.domain.events import (
    Event,
    FreezeDetected,
    GpuOutOfMemory,
    RetryScheduled,
    RunCompleted,
    RunFailed,
    StallDetected,
    StatusUpdated,
    TranscodeStarted,
    TranscodeStopped,
)
from ffwatch.infrastructure.event_bus import EventBus


class JsonLinesReporter:
    """Writes every telemetry event as one JSON object per line."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream if stream is not None else sys.stderr
        self._lock = threading.Lock()

    def attach(self, bus: EventBus):
        bus.subscribe(Event, self.on_event)

    def on_event(self, event: Event):
        line = json.dumps(event.telemetry(), default=str)
        with self._lock:
            self.stream.write(line + "\n")
            self.stream.flush()


class ConsoleReporter:
    """Human-readable telemetry rendered with rich."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(stderr=True, highlight=False)
        self._lock = threading.Lock()

    def attach(self, bus: EventBus):
        bus.subscribe(TranscodeStarted, self.on_started)
        bus.subscribe(TranscodeStopped, self.on_stopped)
        bus.subscribe(StatusUpdated, self.on_status)
        bus.subscribe(StallDetected, self.on_stall)
        bus.subscribe(FreezeDetected, self.on_freeze)
        bus.subscribe(GpuOutOfMemory, self.on_gpu_oom)
        bus.subscribe(RetryScheduled, self.on_retry)
        bus.subscribe(RunCompleted, self.on_completed)
        bus.subscribe(RunFailed, self.on_failed)

    def _print(self, message: str):
        with self._lock:
            self.console.print(message)

    def on_started(self, event: TranscodeStarted):
        self._print(f"[bold]attempt {event.attempt}[/]: ffmpeg {escape(' '.join(event.args))}")

    def on_stopped(self, event: TranscodeStopped):
        suffix = f" ({escape(event.error)})" if event.error else ""
        self._print(f"[dim]attempt {event.attempt} exited with {event.returncode}{suffix}[/]")

    def on_status(self, event: StatusUpdated):
        s = event.sample
        self._print(
            f"[cyan]{event.progress:3d}%[/] frame={s.frame} fps={s.fps} q={s.q} "
            f"size={s.size}KiB time={escape(s.time or '-')} bitrate={s.bitrate}kbit/s "
            f"dup={s.dup} drop={s.drop} speed={s.speed:0.2f}x"
        )

    def on_stall(self, event: StallDetected):
        self._print(f"[red]stalled[/] on frame {event.sample.frame} after {event.updates} updates")

    def on_freeze(self, event: FreezeDetected):
        self._print(f"[red]freeze detected[/]: {event.sample.dup} duplicate frames (limit {event.limit})")

    def on_gpu_oom(self, event: GpuOutOfMemory):
        gpus = ", ".join(f"{g.name} {g.used}/{g.total}" for g in event.gpus) or "no gpu inventory"
        self._print(f"[yellow]gpu out of memory[/]: {escape(gpus)}")

    def on_retry(self, event: RetryScheduled):
        self._print(
            f"[yellow]retry {event.retry}/{event.max_retry}[/] ({event.subject}): {escape(event.details)}"
        )

    def on_completed(self, event: RunCompleted):
        if event.warning:
            self._print(f"[yellow]warning[/]: {escape(event.warning)}")
        self._print(f"[green]done[/] in {event.uptime:.1f}s, {event.sample.frame} frames")

    def on_failed(self, event: RunFailed):
        self._print(f"[red]failed[/]: {escape(event.reason)}")


def build_reporter(kind: str, stream: Optional[TextIO] = None):
    if kind == "console":
        return ConsoleReporter(Console(file=stream, highlight=False) if stream else None)
    return JsonLinesReporter(stream)
