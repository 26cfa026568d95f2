import re
from typing import List, Pattern

# Checked in this order against every line
FATAL_PATTERNS: List[Pattern[str]] = [
    re.compile(r"Impossible to convert between the formats supported by the filter"),
    re.compile(r"Impossible to open.+"),
    re.compile(r".+Invalid data found when processing input"),
    re.compile(r"^[Ss]tream map.+matches no stream"),
    re.compile(r"^[eE]rror"),
]


def scan_error_tail(text: str) -> str:
    """First line of captured ffmpeg stderr that looks fatal, or ''.

    Status repaints ('\\r') count as line breaks, so an error printed right
    after a progress line is still seen at the start of its own line.
    """
    for line in text.splitlines():
        for pattern in FATAL_PATTERNS:
            if pattern.search(line):
                return line
    return ""
