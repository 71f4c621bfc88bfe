"""
Run configuration with environment overrides.
"""

import logging
import os
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from .backend.base import HOST_VISIBLE_COHERENT, INFINITE_TIMEOUT
from .backend.capabilities import DEFAULT_DEBUG_EXTENSION, DEFAULT_VALIDATION_LAYER
from .backend.pipeline import default_shader_dir

logger = logging.getLogger(__name__)

DEFAULT_DIAGNOSTICS_LOG = "/tmp/vulkan_log.txt"
DEFAULT_OUTPUT = "/tmp/array.txt"


def _default_diagnostics_log() -> Optional[str]:
    # The verbose file log is a Linux convenience; elsewhere only stderr is used.
    return DEFAULT_DIAGNOSTICS_LOG if sys.platform.startswith("linux") else None


def _bundled_program() -> Path:
    return default_shader_dir() / "mandelbrot.spv"


def _bundled_source() -> Path:
    return default_shader_dir() / "mandelbrot.comp"


@dataclass
class JobConfig:
    """Everything one compute run needs to know."""

    width: int = 128
    height: int = 128
    element_size: int = 4
    workgroups: tuple = (4, 4, 1)
    memory_flags: int = HOST_VISIBLE_COHERENT

    diagnostics: bool = True
    validation_layer: str = DEFAULT_VALIDATION_LAYER
    debug_extension: str = DEFAULT_DEBUG_EXTENSION
    diagnostics_log: Optional[str] = field(default_factory=_default_diagnostics_log)
    abort_on_validation_error: bool = False

    program: Path = field(default_factory=_bundled_program)
    program_source: Optional[Path] = field(default_factory=_bundled_source)
    output: Optional[str] = DEFAULT_OUTPUT

    device_index: Optional[int] = None
    device_name: Optional[str] = None
    wait_timeout_ns: int = INFINITE_TIMEOUT

    application_name: str = "gpujob"

    def __post_init__(self):
        # The bundled source only builds the bundled binary; a custom program
        # is an external blob unless its own source is given.
        if Path(self.program) != _bundled_program() and self.program_source is not None:
            if Path(self.program_source) == _bundled_source():
                self.program_source = None

    @property
    def element_count(self) -> int:
        return self.width * self.height

    @property
    def byte_size(self) -> int:
        return self.element_count * self.element_size

    @classmethod
    def from_env(cls, environ=None, **overrides) -> "JobConfig":
        """Defaults, then ``GPUJOB_*`` environment variables, then ``overrides``."""
        env = os.environ if environ is None else environ
        values = {}

        if env.get("GPUJOB_DEVICE_INDEX"):
            try:
                values["device_index"] = int(env["GPUJOB_DEVICE_INDEX"])
            except ValueError:
                logger.warning("Ignoring non-integer GPUJOB_DEVICE_INDEX=%r", env["GPUJOB_DEVICE_INDEX"])
        if env.get("GPUJOB_DEVICE_NAME"):
            values["device_name"] = env["GPUJOB_DEVICE_NAME"]
        if env.get("GPUJOB_VALIDATION_LAYER"):
            values["validation_layer"] = env["GPUJOB_VALIDATION_LAYER"]
        if env.get("GPUJOB_WAIT_TIMEOUT_NS"):
            try:
                values["wait_timeout_ns"] = int(env["GPUJOB_WAIT_TIMEOUT_NS"])
            except ValueError:
                logger.warning(
                    "Ignoring non-integer GPUJOB_WAIT_TIMEOUT_NS=%r", env["GPUJOB_WAIT_TIMEOUT_NS"]
                )
        if env.get("GPUJOB_DISABLE_DIAGNOSTICS", "0").lower() in ("1", "true", "yes"):
            values["diagnostics"] = False

        values.update({k: v for k, v in overrides.items() if v is not None})
        return replace(cls(), **values)
