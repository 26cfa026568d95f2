import re
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

# ffmpeg prints "time=H:MM:SS.ss"; hours may be negative at stream start
TIMESTAMP_RE = re.compile(r"^(-?\d+(?:\.\d+)?):(\d+(?:\.\d+)?):(\d+(?:\.\d+)?)")


def parse_timestamp(text: str) -> float:
    """'01:02:03.50' → 3723.5, 'N/A' → 0.0"""
    match = TIMESTAMP_RE.match(text.strip()) if text else None
    if not match:
        return 0.0
    h, m, s = map(float, match.groups())
    return 3600 * h + 60 * m + s


def format_timestamp(seconds: float) -> str:
    """3723.5 → '01:02:03.50'"""
    sign = "-" if seconds < 0 else ""
    centis = int(round(abs(seconds) * 100))
    hours, centis = divmod(centis, 360000)
    minutes, centis = divmod(centis, 6000)
    return f"{sign}{hours:02d}:{minutes:02d}:{centis / 100:05.2f}"


class Sample(BaseModel):
    """One decoded ffmpeg status line.

    Size is in KiB and bitrate in kbit/s, as ffmpeg prints them. fps and speed
    already include the output-count multiplier.
    """

    model_config = ConfigDict(frozen=True)

    frame: int = 0
    fps: int = 0
    q: float = 0.0
    time: str = ""
    size: int = 0
    bitrate: float = 0.0
    dup: int = 0
    drop: int = 0
    speed: float = 0.0

    @property
    def runtime(self) -> float:
        """Encoded timestamp in seconds."""
        return parse_timestamp(self.time)

    def advanced_from(self, prior: "Sample") -> bool:
        return self.frame > prior.frame or self.size > prior.size

    def progress(self, target_duration: float = 0.0, target_frames: int = 0) -> float:
        """Fraction complete; the duration target wins over the frame target.

        Returns 0.0 when neither target is configured.
        """
        if target_duration:
            return self.runtime / target_duration
        if target_frames:
            return self.frame / target_frames
        return 0.0

    def fields(self) -> Dict[str, Any]:
        """Telemetry view: bytes, bits/s and seconds instead of ffmpeg units."""
        return {
            "frame": self.frame,
            "runtime": self.runtime,
            "size": 1024 * self.size,
            "dup": self.dup,
            "drop": self.drop,
            "bps": int(1000 * self.bitrate),
            "fps": self.fps,
            "speed": f"{self.speed:0.2f}",
            "q": self.q,
        }


class ConditionFlags(BaseModel):
    """Failure signatures seen in the stderr stream of one attempt.

    Flags only ever go from False to True.
    """

    hw_frames_exhausted: bool = False
    vram_overflow: bool = False
    filter_incompatible: bool = False

    def mark(self, name: str) -> bool:
        """Sets a flag; returns True only the first time."""
        if getattr(self, name):
            return False
        setattr(self, name, True)
        return True

    @property
    def any_set(self) -> bool:
        return self.hw_frames_exhausted or self.vram_overflow or self.filter_incompatible

    def names(self) -> List[str]:
        return [name for name, value in self.model_dump().items() if value]


class GpuInfo(BaseModel):
    name: str
    pci: str
    driver: str
    used: int = 0
    total: int = 0


class RetryState(BaseModel):
    model_config = ConfigDict(frozen=True)

    retry: int = 0
    extra_hw_frames: Optional[int] = None  # None when -extra_hw_frames is not on the command line


class SupervisorAction(str, Enum):
    DONE = "DONE"
    RETRY = "RETRY"
    FAILED = "FAILED"


class AttemptOutcome(BaseModel):
    """Everything the retry decision needs from one finished ffmpeg run."""

    returncode: Optional[int] = None
    spawn_error: Optional[str] = None
    error_tail: str = ""
    flags: ConditionFlags = Field(default_factory=ConditionFlags)
    aborted: Optional[str] = None  # stall or freeze reason
    last_sample: Sample = Field(default_factory=Sample)

    @property
    def exited_cleanly(self) -> bool:
        return self.returncode == 0 and self.spawn_error is None and self.aborted is None


class Decision(BaseModel):
    action: SupervisorAction
    args: List[str]
    state: RetryState
    reason: str = ""
    subject: Optional[str] = None
    backoff_s: float = 0.0
    warning: Optional[str] = None
