"""Telemetry events emitted while ffmpeg runs under supervision.

Events flow through the EventBus to reporters (JSON lines, rich console),
decoupling the supervisor from how telemetry is rendered.

See `infrastructure/event_bus.py` for the pub/sub mechanism and
`infrastructure/reporters.py` for the consumers.
"""

from typing import Any, ClassVar, Dict, List, Optional
from pydantic import BaseModel, Field
from .models import GpuInfo, Sample


class Event(BaseModel):
    """Base class for all telemetry events.

    `topic` and `action` mirror the keys of the structured log line each event
    becomes; `telemetry()` returns the flat payload written by reporters.
    """

    topic: ClassVar[str] = "status"
    action: ClassVar[str] = ""

    def telemetry(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"topic": self.topic}
        if self.action:
            payload["action"] = self.action
        payload.update(self.model_dump(mode="json"))
        return payload


class SampleEvent(Event):
    """Base class for events that carry the latest accepted sample."""

    sample: Sample = Field(default_factory=Sample)

    def telemetry(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"topic": self.topic}
        if self.action:
            payload["action"] = self.action
        payload.update(self.model_dump(mode="json", exclude={"sample"}))
        payload.update(self.sample.fields())
        return payload


class TranscodeStarted(Event):
    """Emitted when an ffmpeg attempt is spawned."""

    topic: ClassVar[str] = "transcode"
    action: ClassVar[str] = "start"

    attempt: int
    args: List[str]


class TranscodeStopped(Event):
    """Emitted when an ffmpeg attempt has exited."""

    topic: ClassVar[str] = "transcode"
    action: ClassVar[str] = "stop"

    attempt: int
    returncode: Optional[int] = None
    error: Optional[str] = None


class StatusUpdated(SampleEvent):
    """Emitted on every status tick."""

    action: ClassVar[str] = "update"

    progress: int


class StallDetected(SampleEvent):
    action: ClassVar[str] = "stall"

    updates: int


class FreezeDetected(SampleEvent):
    """Emitted when the duplicate frame count reaches the configured ceiling."""

    topic: ClassVar[str] = "dup"
    action: ClassVar[str] = "freeze"

    limit: int


class GpuOutOfMemory(Event):
    topic: ClassVar[str] = "gpu"
    action: ClassVar[str] = "oom"

    line: str
    gpus: List[GpuInfo] = Field(default_factory=list)


class RetryScheduled(Event):
    """Emitted when a remediable failure leads to another attempt."""

    topic: ClassVar[str] = "gpu"
    action: ClassVar[str] = "alert"

    subject: str
    details: str
    retry: int
    max_retry: int
    backoff_s: float = 0.0
    args: List[str] = Field(default_factory=list)


class RunCompleted(SampleEvent):
    topic: ClassVar[str] = "summary"
    action: ClassVar[str] = "done"

    progress: int = 100
    uptime: float
    warning: Optional[str] = None


class RunFailed(SampleEvent):
    topic: ClassVar[str] = "summary"
    action: ClassVar[str] = "failed"

    progress: int = -100
    uptime: float
    reason: str
