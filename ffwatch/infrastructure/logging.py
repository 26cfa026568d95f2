import logging
import sys
from pathlib import Path
from typing import List, Optional

def setup_logging(debug: bool = False, log_path: Optional[Path] = None) -> logging.Logger:
    """
    Setup logging configuration for ffwatch.

    Logs go to stderr, next to ffmpeg's own diagnostics; stdout is left to
    ffmpeg. Returns configured logger instance.

    Args:
        debug: If True, enable DEBUG level logging including every raw status line
        log_path: Optional log file written in addition to stderr
    """
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_path:
        log_file = Path(log_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: file={log_path or '-'} (debug={'ON' if debug else 'OFF'})")

    return logger
