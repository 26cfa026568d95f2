import contextlib
import logging
import os
import queue
import tempfile
import threading
import time
from functools import partial
from typing import BinaryIO, Callable, Iterator, List, Optional, Sequence, Tuple

from ffwatch.config.models import AppConfig
from ffwatch.domain.events import (
    FreezeDetected,
    RetryScheduled,
    RunCompleted,
    RunFailed,
    StallDetected,
    StatusUpdated,
    TranscodeStarted,
    TranscodeStopped,
)
from ffwatch.domain.models import AttemptOutcome, ConditionFlags, RetryState, Sample, SupervisorAction
from ffwatch.infrastructure.event_bus import EventBus
from ffwatch.infrastructure.ffmpeg import CancelToken, FFmpegAdapter, find_extra_hw_frames
from ffwatch.infrastructure.gpu_query import query_gpus
from ffwatch.infrastructure.stream import open_normalized_text
from ffwatch.pipeline.decoder import SampleDecoder
from ffwatch.pipeline.error_tail import scan_error_tail
from ffwatch.pipeline.retry import decide
from ffwatch.pipeline.sampler import GpuQuery, ProgressSampler
from ffwatch.pipeline.stall import StallDetector

EXIT_OK = 0
EXIT_FAILED = 1

# (returncode, spawn error)
_Completion = Tuple[Optional[int], Optional[str]]


class Supervisor:
    """Runs ffmpeg, turns its stderr into telemetry and retries known failures.

    Each attempt uses two daemon threads: one runs ffmpeg and tees stderr into
    the capture file and a pipe, the other decodes the pipe into samples. The
    calling thread multiplexes completion, samples and the status timer, and
    alone decides what happens when ffmpeg exits.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        ffmpeg: FFmpegAdapter,
        gpu_query: Optional[GpuQuery] = None,
        sleep: Callable[[float], None] = time.sleep,
        poll_interval: float = 0.1,
    ):
        self.config = config
        self.event_bus = event_bus
        self.ffmpeg = ffmpeg
        if gpu_query is None:
            gpu_query = partial(query_gpus, timeout=config.gpu.query_timeout_s) if config.gpu.enabled else list
        self.gpu_query = gpu_query
        self.sleep = sleep
        self.poll_interval = poll_interval
        self.logger = logging.getLogger(__name__)
        self._started = time.monotonic()

    # ------------------------------------------------------------------
    # Retry loop
    # ------------------------------------------------------------------

    def run(self, args: Sequence[str]) -> int:
        """Supervises ffmpeg until it succeeds or fails for good; returns the exit code."""
        self._started = time.monotonic()
        args = list(args)
        state = RetryState(extra_hw_frames=find_extra_hw_frames(args))
        if state.extra_hw_frames is not None:
            self.logger.info(f"GPU_BOOTSTRAP: detected -extra_hw_frames arg (extra_hw_frames={state.extra_hw_frames})")

        attempt = 0
        with self._open_capture() as capture:
            while True:
                attempt += 1
                outcome = self.run_attempt(args, attempt, capture)
                decision = decide(outcome, args, state, self.config.retry)

                if decision.action == SupervisorAction.RETRY:
                    self.logger.error(
                        f"RETRY: {decision.reason} (subject={decision.subject}, retry={decision.state.retry}, "
                        f"maxretry={self.config.retry.max_retry}, returncode={outcome.returncode})"
                    )
                    self.event_bus.publish(RetryScheduled(
                        subject=decision.subject or "retry",
                        details=decision.reason,
                        retry=decision.state.retry,
                        max_retry=self.config.retry.max_retry,
                        backoff_s=decision.backoff_s,
                        args=decision.args,
                    ))
                    if decision.backoff_s:
                        self.sleep(decision.backoff_s)
                    args, state = decision.args, decision.state
                    continue

                uptime = time.monotonic() - self._started
                if decision.action == SupervisorAction.DONE:
                    if decision.warning:
                        self.logger.warning(f"STATUS: {decision.warning}")
                    self.logger.info(f"SUMMARY: done (attempts={attempt}, uptime={uptime:.2f}s)")
                    self.event_bus.publish(RunCompleted(
                        sample=outcome.last_sample, uptime=uptime, warning=decision.warning,
                    ))
                    return EXIT_OK

                self.logger.error(f"SUMMARY: failed: {decision.reason!r} (attempts={attempt})")
                self.event_bus.publish(RunFailed(
                    sample=outcome.last_sample, uptime=uptime, reason=decision.reason,
                ))
                return EXIT_FAILED

    @contextlib.contextmanager
    def _open_capture(self) -> Iterator[BinaryIO]:
        """Append-only stderr capture shared by all attempts of one run."""
        general = self.config.general
        if general.stderr_path:
            with open(general.stderr_path, "a+b") as capture:
                yield capture
        elif general.keep_stderr:
            with tempfile.NamedTemporaryFile(prefix="ffmpeg", delete=False) as capture:
                self.logger.info(f"STDERR: capturing ffmpeg stderr to {capture.name}")
                yield capture
        else:
            with tempfile.TemporaryFile(prefix="ffmpeg") as capture:
                yield capture

    # ------------------------------------------------------------------
    # Single attempt
    # ------------------------------------------------------------------

    def _progress(self, sample: Sample) -> int:
        watch = self.config.watch
        percent = int(sample.progress(watch.target_duration, watch.target_frames) * 100)
        return max(0, percent)

    def _publish_status(self, sample: Sample):
        self.event_bus.publish(StatusUpdated(progress=self._progress(sample), sample=sample))

    def run_attempt(self, args: Sequence[str], attempt: int, capture: BinaryIO) -> AttemptOutcome:
        watch = self.config.watch
        start_offset = capture.seek(0, os.SEEK_END)

        read_fd, write_fd = os.pipe()
        pipe_reader = os.fdopen(read_fd, "rb", buffering=0)
        pipe_writer = os.fdopen(write_fd, "wb")

        done: "queue.Queue[_Completion]" = queue.Queue(maxsize=1)
        samples: "queue.Queue[Optional[Sample]]" = queue.Queue(maxsize=watch.queue_size)
        token = CancelToken()
        sampler = ProgressSampler(
            decoder=SampleDecoder(outputs=watch.outputs),
            gpu_query=self.gpu_query,
            event_bus=self.event_bus,
        )
        flags_box: List[ConditionFlags] = []

        def _execute():
            result: _Completion = (None, None)
            try:
                result = (self.ffmpeg.run(args, [capture, pipe_writer], token), None)
            except OSError as e:
                self.logger.error(f"FFMPEG_ERROR: {e}")
                result = (None, str(e))
            finally:
                pipe_writer.close()
                done.put(result)

        def _watch():
            with open_normalized_text(pipe_reader) as stream:
                flags_box.append(sampler.watch(stream, samples))

        self.event_bus.publish(TranscodeStarted(attempt=attempt, args=list(args)))
        executor = threading.Thread(target=_execute, name=f"ffmpeg-{attempt}", daemon=True)
        watcher = threading.Thread(target=_watch, name=f"watch-{attempt}", daemon=True)
        executor.start()
        watcher.start()

        stall = StallDetector(max_stall=watch.max_stall, max_dup=watch.max_dup)
        prior = Sample()
        aborted: Optional[str] = None
        samples_open = True
        next_tick = time.monotonic() + watch.status_interval_s
        self._publish_status(prior)

        try:
            completion: Optional[_Completion] = None
            while completion is None:
                try:
                    completion = done.get_nowait()
                    break
                except queue.Empty:
                    pass

                timeout = min(self.poll_interval, max(0.0, next_tick - time.monotonic()))
                if samples_open:
                    try:
                        current = samples.get(timeout=timeout)
                    except queue.Empty:
                        pass
                    else:
                        if current is None:
                            samples_open = False
                        else:
                            aborted = self._observe(current, stall, token, aborted)
                            prior = current
                else:
                    try:
                        completion = done.get(timeout=timeout)
                        break
                    except queue.Empty:
                        pass

                if time.monotonic() >= next_tick:
                    self._publish_status(prior)
                    next_tick += watch.status_interval_s
        except KeyboardInterrupt:
            token.cancel()
            raise

        # completion can overtake the last samples; drain until the watcher closes the queue
        while samples_open:
            current = samples.get()
            if current is None:
                samples_open = False
            else:
                prior = current
        watcher.join()
        executor.join()

        returncode, spawn_error = completion
        capture.seek(start_offset)
        error_tail = scan_error_tail(capture.read().decode("utf-8", errors="replace"))
        capture.seek(0, os.SEEK_END)

        self.event_bus.publish(TranscodeStopped(
            attempt=attempt, returncode=returncode, error=spawn_error or error_tail or None,
        ))
        return AttemptOutcome(
            returncode=returncode,
            spawn_error=spawn_error,
            error_tail=error_tail,
            flags=flags_box[0] if flags_box else sampler.flags,
            aborted=aborted,
            last_sample=prior,
        )

    def _observe(self, current: Sample, stall: StallDetector, token: CancelToken, aborted: Optional[str]) -> Optional[str]:
        """Freeze and stall checks for one accepted sample; returns the abort reason, if any."""
        if aborted:
            return aborted
        watch = self.config.watch
        if stall.frozen(current):
            token.cancel()
            self.logger.error(f"DUP: freeze detected (frames={current.dup}, limit={watch.max_dup})")
            self.event_bus.publish(FreezeDetected(sample=current, limit=watch.max_dup))
            return f"freeze detected: {current.dup} duplicate frames (limit {watch.max_dup})"

        count = stall.observe(current)
        if stall.stalled:
            token.cancel()
            self.logger.error(f"STALL: stalled on frame {current.frame} after {count} updates")
            self.event_bus.publish(StallDetected(sample=current, updates=count))
            return f"stalled on frame {current.frame} after {count} updates"
        return None
