"""
Host mapping of device memory as typed numpy views.
"""

import ctypes
import logging

import numpy as np

from .base import vk
from .errors import ReadbackOrderError, UnknownError, vk_errors

logger = logging.getLogger(__name__)


class MappedView:
    """A numpy view over mapped device memory, unmapped exactly once.

    Holders share the view with :meth:`acquire` / :meth:`release`; the
    mapping is released when the last holder lets go. The view can also be
    used as a context manager.
    """

    def __init__(self, device, memory, array: np.ndarray):
        self._device = device
        self._memory = memory
        self._array = array
        self._refs = 1

    @property
    def array(self) -> np.ndarray:
        if self._array is None:
            raise ValueError("Mapped view has been released")
        return self._array

    @property
    def released(self) -> bool:
        return self._array is None

    def acquire(self) -> "MappedView":
        if self._array is None:
            raise ValueError("Mapped view has been released")
        self._refs += 1
        return self

    def release(self):
        if self._array is None:
            return
        self._refs -= 1
        if self._refs > 0:
            return
        self._array = None
        vk.vkUnmapMemory(self._device, self._memory)
        logger.debug("Unmapped readback view")

    def copy(self) -> np.ndarray:
        return self.array.copy()

    def __len__(self):
        return len(self.array)

    def __getitem__(self, index):
        return self.array[index]

    def __iter__(self):
        return iter(self.array)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


def _as_array(data_ptr, byte_size: int, dtype) -> np.ndarray:
    count = byte_size // np.dtype(dtype).itemsize
    requested = count * np.dtype(dtype).itemsize
    try:
        memview = memoryview(data_ptr)
    except TypeError:
        memview = None

    if memview is not None and len(memview) >= requested:
        return np.frombuffer(memview[:requested], dtype=dtype, count=count)

    # Fallback for bindings whose mapped pointer exposes an undersized or
    # non-buffer-compatible memoryview: read through the raw address.
    raw = ctypes.string_at(data_ptr, requested)
    return np.frombuffer(raw, dtype=dtype, count=count)


class ReadbackMapper:
    def __init__(self, device):
        self.device = device

    def map(self, memory, byte_size: int, dtype=np.float32, token=None) -> MappedView:
        """Map ``memory[0, byte_size)`` and view it as ``dtype`` elements.

        When ``token`` is given it must already have completed; the memory is
        host-coherent so no invalidation is needed after the wait.
        """
        if token is not None and not token.completed:
            raise ReadbackOrderError("Memory mapped before the dispatch's completion token was waited on")
        if byte_size <= 0:
            raise ValueError(f"Mapped range must be positive, got {byte_size}")

        with vk_errors("vkMapMemory", UnknownError):
            data_ptr = vk.vkMapMemory(self.device, memory, 0, byte_size, 0)
        try:
            array = _as_array(data_ptr, byte_size, dtype)
        except Exception:
            vk.vkUnmapMemory(self.device, memory)
            raise
        return MappedView(self.device, memory, array)
