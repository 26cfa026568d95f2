from typing import Optional
from pydantic import BaseModel, Field, field_validator

TELEMETRY_FORMATS = {"json", "console"}


class GeneralConfig(BaseModel):
    ffmpeg_path: str = "ffmpeg"
    stderr_path: Optional[str] = None  # None = anonymous temp file
    keep_stderr: bool = False  # keep the temp capture file after the run
    log_path: Optional[str] = None
    telemetry: str = "json"
    debug: bool = False

    @field_validator("telemetry")
    @classmethod
    def validate_telemetry(cls, v: str) -> str:
        if v not in TELEMETRY_FORMATS:
            raise ValueError(f"Unsupported telemetry format: {v}. Use one of {sorted(TELEMETRY_FORMATS)}")
        return v


class WatchConfig(BaseModel):
    """Progress sampling and stall/freeze policy."""
    max_stall: int = Field(default=1000, ge=0)  # 0 disables stall detection
    max_dup: int = Field(default=0, ge=0)  # 0 disables freeze detection
    status_interval_s: float = Field(default=3.0, gt=0)
    target_duration: float = Field(default=0.0, ge=0)  # seconds
    target_frames: int = Field(default=0, ge=0)
    outputs: int = Field(default=1, ge=1)
    queue_size: int = Field(default=1000, ge=1)


class RetryConfig(BaseModel):
    max_retry: int = Field(default=60, ge=0)
    strict_errors: bool = False
    max_extra_hw_frames: int = Field(default=64, ge=0)
    backoff_s: float = Field(default=2.0, ge=0)


class GpuConfig(BaseModel):
    """nvidia-smi inventory used to confirm out-of-memory signatures."""
    enabled: bool = True
    query_timeout_s: float = Field(default=5.0, gt=0)


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    gpu: GpuConfig = Field(default_factory=GpuConfig)
