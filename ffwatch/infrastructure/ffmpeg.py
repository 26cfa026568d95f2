import logging
import shlex
import shutil
import subprocess
import threading
from typing import BinaryIO, List, Optional, Sequence
from ffwatch.infrastructure.stream import copy_stream

EXTRA_HW_FRAMES_OPTION = "-extra_hw_frames"


class CancelToken:
    """One-shot cancellation shared by the supervising loop and the execution thread.

    `cancel()` may be called any number of times, before or after the process
    is attached. A process that ignores SIGTERM is killed after `kill_after`
    seconds.
    """

    def __init__(self, kill_after: float = 3.0):
        self.kill_after = kill_after
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._process: Optional[subprocess.Popen] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def attach(self, process: subprocess.Popen):
        with self._lock:
            self._process = process
            if self._event.is_set():
                self._terminate()

    def cancel(self):
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            self._terminate()

    def _terminate(self):
        process = self._process
        if process is None or process.poll() is not None:
            return
        process.terminate()
        timer = threading.Timer(self.kill_after, self._kill, args=(process,))
        timer.daemon = True
        timer.start()

    @staticmethod
    def _kill(process: subprocess.Popen):
        if process.poll() is None:
            logging.getLogger(__name__).warning("FFMPEG_KILL: process ignored terminate, killing")
            process.kill()


class FFmpegAdapter:
    """Runs ffmpeg with stdin/stdout inherited and stderr tee'd to the given sinks."""

    def __init__(self, ffmpeg_path: str = "ffmpeg"):
        self.ffmpeg_path = ffmpeg_path
        self.logger = logging.getLogger(__name__)

    def resolve(self) -> str:
        """Returns the absolute ffmpeg path or raises FileNotFoundError."""
        found = shutil.which(self.ffmpeg_path)
        if found is None:
            raise FileNotFoundError(f"ffmpeg not found: {self.ffmpeg_path}")
        return found

    def _build_command(self, args: Sequence[str]) -> List[str]:
        return [self.ffmpeg_path, *args]

    def run(self, args: Sequence[str], stderr_sinks: Sequence[BinaryIO], cancel: CancelToken) -> int:
        """Runs ffmpeg to completion and returns its exit code.

        Blocks until stderr reaches EOF and the process is reaped.
        """
        cmd = self._build_command(args)
        self.logger.info(f"FFMPEG_START: cmd: {shlex.join(cmd)}")

        process = subprocess.Popen(cmd, stderr=subprocess.PIPE)
        cancel.attach(process)

        try:
            if process.stderr:
                copy_stream(process.stderr, stderr_sinks)
        finally:
            if process.stderr:
                process.stderr.close()
        returncode = process.wait()

        self.logger.info(f"FFMPEG_STOP: returncode={returncode} cancelled={cancel.cancelled}")
        return returncode


def find_option_value(args: Sequence[str], option: str) -> Optional[str]:
    """Value following the last occurrence of `option`, or None."""
    value = None
    for i in range(1, len(args)):
        if args[i - 1] == option:
            value = args[i]
    return value


def replace_option_value(args: Sequence[str], option: str, value: str) -> List[str]:
    """Copy of args with the value after the last `option` replaced."""
    result = list(args)
    index = None
    for i in range(1, len(result)):
        if result[i - 1] == option:
            index = i
    if index is None:
        raise ValueError(f"{option} not present in arguments")
    result[index] = value
    return result


def find_extra_hw_frames(args: Sequence[str]) -> Optional[int]:
    """Tracked -extra_hw_frames value; 0 when present but not an integer."""
    raw = find_option_value(args, EXTRA_HW_FRAMES_OPTION)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return 0
