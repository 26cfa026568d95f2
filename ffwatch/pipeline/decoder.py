import re
from typing import Any, Callable, Dict, List, Tuple
from ffwatch.domain.models import Sample

PROGRESS_PREFIXES = ("frame=", "size=")  # video / audio-only or remux

INT_RE = re.compile(r"[-+]?\d+")
FLOAT_RE = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")


def scan_int(token: str) -> int:
    """Leading integer of a token: '1024kB' → 1024, 'N/A' → 0."""
    m = INT_RE.match(token)
    return int(m.group()) if m else 0


def scan_float(token: str) -> float:
    """Leading float of a token: '1.53x' → 1.53, '2311.4kbits/s' → 2311.4."""
    m = FLOAT_RE.match(token)
    return float(m.group()) if m else 0.0


def scan_text(token: str) -> str:
    return token


# status key -> (Sample field, scanner)
FIELD_TABLE: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "frame": ("frame", scan_int),
    "fps": ("fps", scan_int),
    "q": ("q", scan_float),
    "size": ("size", scan_int),
    "Lsize": ("size", scan_int),  # final summary line uses Lsize for the same value
    "time": ("time", scan_text),
    "bitrate": ("bitrate", scan_float),
    "dup": ("dup", scan_int),
    "drop": ("drop", scan_int),
    "speed": ("speed", scan_float),
}


def demangle(line: str) -> List[str]:
    """Flattens 'frame=  120 fps= 30 q=28.0' into ['frame', '120', 'fps', '30', 'q', '28.0'].

    ffmpeg left-pads numbers after '=', so the equal signs are dropped and the
    rest is treated as a whitespace separated key/value list.
    """
    return " ".join(part.strip() for part in line.split("=")).split()


class SampleDecoder:
    """Decodes ffmpeg status lines into Samples.

    `outputs` scales fps and speed when one input feeds several outputs, so the
    reported figures describe the whole job.
    """

    def __init__(self, outputs: int = 1):
        self.outputs = outputs

    @staticmethod
    def is_progress_line(line: str) -> bool:
        return line.startswith(PROGRESS_PREFIXES)

    def decode(self, previous: Sample, line: str) -> Sample:
        """Decodes a status line into a fresh Sample; fields missing from the line stay zero.

        A line that is not a status line returns previous unchanged.
        """
        if not self.is_progress_line(line):
            return previous

        tokens = demangle(line)
        updates: Dict[str, Any] = {}
        for key, value in zip(tokens[0::2], tokens[1::2]):
            entry = FIELD_TABLE.get(key)
            if entry is None:
                continue
            field, scan = entry
            updates[field] = scan(value)

        if "fps" in updates:
            updates["fps"] *= self.outputs
        if "speed" in updates:
            updates["speed"] = round(updates["speed"] * self.outputs, 2)
        return Sample(**updates)
