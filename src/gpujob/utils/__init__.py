"""Logging and result-dump helpers."""

from .log import ElapsedFormatter, RunClock, configure_logging, format_header
from .output import load_array, save_array

__all__ = [
    "ElapsedFormatter",
    "RunClock",
    "configure_logging",
    "format_header",
    "load_array",
    "save_array",
]
