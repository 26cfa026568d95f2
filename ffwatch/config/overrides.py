import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from ffwatch.config.models import AppConfig

_logger = logging.getLogger(__name__)

# Environment variables kept for compatibility with existing wrapper scripts.
# A zero or empty value means "keep the configured default".
_ENV_NUMERIC: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "MAXSTALL": ("watch", "max_stall", int),
    "LOGFREQ": ("watch", "status_interval_s", float),
    "MAXDUP": ("watch", "max_dup", int),
    "DUR": ("watch", "target_duration", float),
    "FRAMES": ("watch", "target_frames", int),
    "OUTPUTS": ("watch", "outputs", int),
    "MAXRETRY": ("retry", "max_retry", int),
    "MAXEXTRAHWFRAMES": ("retry", "max_extra_hw_frames", int),
}


def _revalidate(config: AppConfig, updates: Dict[str, Dict[str, Any]]) -> AppConfig:
    data = config.model_dump()
    for section, values in updates.items():
        data[section].update(values)
    return AppConfig.model_validate(data)


def apply_env_overrides(config: AppConfig, environ: Mapping[str, str]) -> AppConfig:
    """Returns a new config with the legacy environment variables applied."""
    updates: Dict[str, Dict[str, Any]] = {"general": {}, "watch": {}, "retry": {}}

    for key, (section, field, parse) in _ENV_NUMERIC.items():
        raw = environ.get(key, "").strip()
        if not raw:
            continue
        try:
            value = parse(raw)
        except ValueError:
            _logger.warning("Ignoring %s=%r: not a number", key, raw)
            continue
        if value:
            updates[section][field] = value

    stderr_path = environ.get("STDERR", "")
    if stderr_path:
        updates["general"]["stderr_path"] = stderr_path

    if "STRICT_ERRORS" in environ:
        updates["retry"]["strict_errors"] = environ["STRICT_ERRORS"] not in ("", "0")

    if not any(updates.values()):
        return config
    return _revalidate(config, updates)


@dataclass(frozen=True)
class CliConfigOverrides:
    max_stall: Optional[int] = None
    max_dup: Optional[int] = None
    interval: Optional[float] = None
    duration: Optional[float] = None
    frames: Optional[int] = None
    outputs: Optional[int] = None
    max_retry: Optional[int] = None
    strict: Optional[bool] = None
    max_extra_hw_frames: Optional[int] = None
    stderr_path: Optional[str] = None
    telemetry: Optional[str] = None
    log_path: Optional[str] = None
    debug: bool = False

    @property
    def has_overrides(self) -> bool:
        return any(
            value is not None
            for value in (
                self.max_stall,
                self.max_dup,
                self.interval,
                self.duration,
                self.frames,
                self.outputs,
                self.max_retry,
                self.strict,
                self.max_extra_hw_frames,
                self.stderr_path,
                self.telemetry,
                self.log_path,
            )
        ) or self.debug

    def apply(self, config: AppConfig) -> AppConfig:
        if not self.has_overrides:
            return config
        watch: Dict[str, Any] = {}
        retry: Dict[str, Any] = {}
        general: Dict[str, Any] = {}
        if self.max_stall is not None:
            watch["max_stall"] = self.max_stall
        if self.max_dup is not None:
            watch["max_dup"] = self.max_dup
        if self.interval is not None:
            watch["status_interval_s"] = self.interval
        if self.duration is not None:
            watch["target_duration"] = self.duration
        if self.frames is not None:
            watch["target_frames"] = self.frames
        if self.outputs is not None:
            watch["outputs"] = self.outputs
        if self.max_retry is not None:
            retry["max_retry"] = self.max_retry
        if self.strict is not None:
            retry["strict_errors"] = self.strict
        if self.max_extra_hw_frames is not None:
            retry["max_extra_hw_frames"] = self.max_extra_hw_frames
        if self.stderr_path is not None:
            general["stderr_path"] = str(self.stderr_path)
        if self.telemetry is not None:
            general["telemetry"] = self.telemetry
        if self.log_path is not None:
            general["log_path"] = str(self.log_path)
        if self.debug:
            general["debug"] = True
        return _revalidate(config, {"general": general, "watch": watch, "retry": retry})
