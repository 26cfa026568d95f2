import logging
import queue
from typing import Callable, Iterable, List, Optional
from ffwatch.domain.events import GpuOutOfMemory
from ffwatch.domain.models import ConditionFlags, GpuInfo, Sample
from ffwatch.infrastructure.event_bus import EventBus
from ffwatch.pipeline.decoder import SampleDecoder

HW_SURFACES_MARKER = "No decoder surfaces left"
FILTER_FORMAT_MARKER = "Impossible to convert between the formats supported by the filter"

GpuQuery = Callable[[], List[GpuInfo]]


def _no_gpus() -> List[GpuInfo]:
    return []


def is_gpu_oom(line: str, gpu_query: GpuQuery = _no_gpus) -> bool:
    """True for nvenc/CUDA out-of-memory signatures.

    CUDA_ERROR_NO_DEVICE also shows up on machines without any GPU; it only
    counts when the inventory says a device is actually there.
    """
    if "nvenc" in line and "OpenEncodeSessionEx failed" in line:
        return True
    if "nvenc" in line and "out of memory" in line:
        return True
    if "CUDA_ERROR_OUT_OF_MEMORY" in line:
        return True
    if "CUDA_ERROR_NO_DEVICE" in line and len(gpu_query()) != 0:
        return True
    return False


class ProgressSampler:
    """Watches one attempt's normalized stderr.

    Accepted samples go to a queue, terminated by a None sentinel; failure
    signatures are recorded in the ConditionFlags returned by `watch`.
    A sampler instance belongs to a single attempt.
    """

    def __init__(
        self,
        decoder: Optional[SampleDecoder] = None,
        gpu_query: GpuQuery = _no_gpus,
        event_bus: Optional[EventBus] = None,
    ):
        self.decoder = decoder or SampleDecoder()
        self.gpu_query = gpu_query
        self.event_bus = event_bus
        self.flags = ConditionFlags()
        self.logger = logging.getLogger(__name__)

    def scan_signatures(self, line: str):
        if HW_SURFACES_MARKER in line and self.flags.mark("hw_frames_exhausted"):
            self.logger.warning(f"HWFRAMES: decoder surfaces exhausted: {line}")

        if FILTER_FORMAT_MARKER in line and self.flags.mark("filter_incompatible"):
            self.logger.warning(f"FILTERBUG: filter format mismatch: {line}")

        if not self.flags.vram_overflow and is_gpu_oom(line, self.gpu_query):
            self.flags.mark("vram_overflow")
            self._report_gpu_oom(line)

    def _report_gpu_oom(self, line: str):
        gpus = self.gpu_query()
        for i, g in enumerate(gpus):
            self.logger.warning(
                f"GPU_OOM: gpu out of memory condition (gpu_num={i}, gpu_mem_used={g.used}, "
                f"gpu_mem_total={g.total}, gpu_name={g.name}, gpu_pci={g.pci}, gpu_driver={g.driver})"
            )
        if not gpus:
            self.logger.warning(f"GPU_OOM: gpu out of memory condition: {line}")
        if self.event_bus:
            self.event_bus.publish(GpuOutOfMemory(line=line, gpus=gpus))

    def watch(self, lines: Iterable[str], samples: "queue.Queue[Optional[Sample]]") -> ConditionFlags:
        """Consumes lines until EOF; always closes the queue with None."""
        last = Sample()
        try:
            for raw in lines:
                line = raw.rstrip("\n")
                if not line:
                    continue
                self.scan_signatures(line)
                self.logger.debug(f"watch: state: {line}")

                current = self.decoder.decode(last, line)
                if not current.advanced_from(last):
                    continue
                samples.put(current)
                last = current
        finally:
            samples.put(None)
        return self.flags
