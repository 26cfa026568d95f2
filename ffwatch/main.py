import os
import typer
import yaml
from pathlib import Path
from typing import List, Optional

from ffwatch.config.loader import load_config
from ffwatch.config.overrides import CliConfigOverrides, apply_env_overrides
from ffwatch.infrastructure.logging import setup_logging
from ffwatch.infrastructure.event_bus import EventBus
from ffwatch.infrastructure.ffmpeg import FFmpegAdapter
from ffwatch.infrastructure.reporters import build_reporter
from ffwatch.pipeline.supervisor import Supervisor

app = typer.Typer(help="ffwatch - run ffmpeg with structured telemetry and self-healing retries")

@app.command(context_settings={"ignore_unknown_options": True})
def run(
    ffmpeg_args: Optional[List[str]] = typer.Argument(
        None,
        help="Arguments passed to ffmpeg unchanged (put them after --)"
    ),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    max_stall: Optional[int] = typer.Option(None, "--max-stall", help="Abort after this many updates without frame progress (0 = off)"),
    max_dup: Optional[int] = typer.Option(None, "--max-dup", help="Abort once this many duplicate frames are reported (0 = off)"),
    interval: Optional[float] = typer.Option(None, "--interval", help="Seconds between status events"),
    duration: Optional[float] = typer.Option(None, "--duration", help="Expected output duration in seconds, for progress"),
    frames: Optional[int] = typer.Option(None, "--frames", help="Expected frame count, for progress"),
    outputs: Optional[int] = typer.Option(None, "--outputs", help="Number of outputs; scales fps and speed"),
    max_retry: Optional[int] = typer.Option(None, "--max-retry", help="Retry budget for GPU out-of-memory"),
    strict: Optional[bool] = typer.Option(None, "--strict/--tolerant", help="Fail when ffmpeg exits 0 but printed a fatal-looking error"),
    max_extra_hw_frames: Optional[int] = typer.Option(None, "--max-extra-hw-frames", help="Ceiling for -extra_hw_frames retries"),
    stderr_path: Optional[Path] = typer.Option(None, "--stderr", help="Append ffmpeg stderr to this file"),
    telemetry: Optional[str] = typer.Option(None, "--telemetry", help="Telemetry format: json or console"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Also write logs to this file"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging")
):
    """Run ffmpeg under supervision: ffwatch [OPTIONS] -- <ffmpeg args>"""
    overrides = CliConfigOverrides(
        max_stall=max_stall,
        max_dup=max_dup,
        interval=interval,
        duration=duration,
        frames=frames,
        outputs=outputs,
        max_retry=max_retry,
        strict=strict,
        max_extra_hw_frames=max_extra_hw_frames,
        stderr_path=str(stderr_path) if stderr_path is not None else None,
        telemetry=telemetry,
        log_path=str(log_path) if log_path is not None else None,
        debug=debug,
    )

    try:
        config = load_config(config_path)
        config = apply_env_overrides(config, os.environ)
        config = overrides.apply(config)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    if not ffmpeg_args:
        typer.secho("Error: no ffmpeg arguments given (usage: ffwatch [OPTIONS] -- <ffmpeg args>)", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    log_path_value = Path(config.general.log_path) if config.general.log_path else None
    logger = setup_logging(debug=config.general.debug, log_path=log_path_value)
    logger.info(
        f"Config: max_stall={config.watch.max_stall}, max_dup={config.watch.max_dup}, "
        f"interval={config.watch.status_interval_s}s, outputs={config.watch.outputs}, "
        f"max_retry={config.retry.max_retry}, strict={config.retry.strict_errors}"
    )

    ffmpeg = FFmpegAdapter(ffmpeg_path=config.general.ffmpeg_path)
    try:
        ffmpeg.resolve()
    except FileNotFoundError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    bus = EventBus()
    build_reporter(config.general.telemetry).attach(bus)
    supervisor = Supervisor(config=config, event_bus=bus, ffmpeg=ffmpeg)

    try:
        exit_code = supervisor.run(ffmpeg_args)
    except KeyboardInterrupt:
        typer.secho("\nffmpeg stopped by user (Ctrl+C)", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=130)

    raise typer.Exit(code=exit_code)

if __name__ == "__main__":
    app()
