"""
Relative-timestamp log formatting.

The run clock is created once in the entry point and handed to whatever
needs elapsed times (the logging formatter and diagnostics sinks).
"""

import logging
import sys
import time
from typing import Optional


class RunClock:
    """Milliseconds elapsed since the run started."""

    def __init__(self, start: Optional[float] = None, now=time.monotonic):
        self._now = now
        self.start = now() if start is None else start

    def elapsed_ms(self) -> int:
        return int((self._now() - self.start) * 1000)


def format_header(clock: RunClock, source: str, line: Optional[int] = None) -> str:
    """``[    12ms][source:line]: `` prefix used by every log line of the run."""
    location = source if line is None or line < 0 else f"{source}:{line}"
    return f"[{clock.elapsed_ms():6d}ms][{location}]: "


class ElapsedFormatter(logging.Formatter):
    def __init__(self, clock: RunClock):
        super().__init__()
        self.clock = clock

    def format(self, record: logging.LogRecord) -> str:
        text = format_header(self.clock, record.filename, record.lineno) + record.getMessage()
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


def configure_logging(clock: RunClock, verbose: bool = False, stream=None) -> logging.Handler:
    """Attach an elapsed-time handler to the ``gpujob`` logger."""
    logger = logging.getLogger("gpujob")
    for existing in list(logger.handlers):
        if isinstance(existing.formatter, ElapsedFormatter):
            logger.removeHandler(existing)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(ElapsedFormatter(clock))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    return handler
