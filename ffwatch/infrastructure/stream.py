import io
from typing import BinaryIO, Iterable

_CR_TO_LF = bytes.maketrans(b"\r", b"\n")

DEFAULT_CHUNK_SIZE = 64 * 1024


class CarriageReturnReader(io.RawIOBase):
    """Raw reader that turns every carriage return into a line feed.

    ffmpeg repaints its status line with '\\r'; after this translation each
    repaint becomes a separate line. Byte count is preserved.
    """

    def __init__(self, raw: BinaryIO):
        self._raw = raw

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        view = memoryview(buffer).cast("B")
        if hasattr(self._raw, "readinto"):
            n = self._raw.readinto(view)
        else:
            data = self._raw.read(len(view))
            n = len(data)
            view[:n] = data
        if n:
            view[:n] = view[:n].tobytes().translate(_CR_TO_LF)
        return n

    def close(self) -> None:
        if not self.closed:
            self._raw.close()
        super().close()


def open_normalized_text(raw: BinaryIO, encoding: str = "utf-8") -> io.TextIOWrapper:
    """Line-iterable text view of a raw byte stream with '\\r' treated as '\\n'."""
    return io.TextIOWrapper(
        io.BufferedReader(CarriageReturnReader(raw)),
        encoding=encoding,
        errors="replace",
        newline="\n",
    )


def copy_stream(source: BinaryIO, sinks: Iterable[BinaryIO], chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """Copies source to every sink until EOF. Returns bytes copied."""
    targets = list(sinks)
    read = getattr(source, "read1", source.read)
    total = 0
    while True:
        chunk = read(chunk_size)
        if not chunk:
            break
        # flush per chunk so the watcher sees status lines as they are painted
        for sink in targets:
            sink.write(chunk)
            sink.flush()
        total += len(chunk)
    return total
