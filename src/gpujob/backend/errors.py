"""
Error taxonomy for the compute job and translation of driver exceptions.

The ``vulkan`` bindings raise one exception class per ``VkResult`` code
(``VkTimeout``, ``VkErrorDeviceLost``, ...), all deriving from ``VkException``
or ``VkError``. Call sites wrap driver calls in :func:`vk_errors` so the job
only ever sees the kinds defined here.
"""

from contextlib import contextmanager


class GpuJobError(Exception):
    """Base class for every failure the compute job reports."""

    kind = "UnknownError"


class InitializationError(GpuJobError):
    """Instance or logical device creation failed."""

    kind = "InitializationError"


class NoDeviceError(GpuJobError):
    kind = "NoDeviceError"


class NoQueueFamilyError(GpuJobError):
    kind = "NoQueueFamilyError"


class NoMemoryTypeError(GpuJobError):
    kind = "NoMemoryTypeError"


class ResourceCreationError(GpuJobError):
    """Buffer, descriptor, pipeline or command object creation failed."""

    kind = "ResourceCreationError"


class WaitTimeoutError(GpuJobError):
    """The fence did not signal within the requested bound. May be retried."""

    kind = "WaitTimeoutError"


class DeviceLostError(GpuJobError):
    """The driver reported VK_ERROR_DEVICE_LOST. Fatal for the context."""

    kind = "DeviceLostError"


class UnknownError(GpuJobError):
    kind = "UnknownError"


class TokenConsumedError(GpuJobError):
    """A completion token was waited on after its fence was destroyed."""

    kind = "TokenConsumedError"


class ReadbackOrderError(GpuJobError):
    """Device memory was mapped before the dispatch completed."""

    kind = "ReadbackOrderError"


class PhaseError(GpuJobError):
    """A job phase was entered out of order."""

    kind = "PhaseError"


class TeardownError(GpuJobError):
    kind = "TeardownError"


# Driver exception class name -> error kind, checked along the MRO so that
# subclasses added by newer bindings still map.
_VK_EXCEPTION_KINDS = {
    "VkTimeout": WaitTimeoutError,
    "VkErrorDeviceLost": DeviceLostError,
    "VkErrorInitializationFailed": InitializationError,
    "VkErrorLayerNotPresent": InitializationError,
    "VkErrorExtensionNotPresent": InitializationError,
    "VkErrorIncompatibleDriver": InitializationError,
}


def is_vk_exception(exc: BaseException) -> bool:
    """True for exceptions raised by the ``vulkan`` bindings for a VkResult."""
    return any(cls.__name__ in ("VkException", "VkError") for cls in type(exc).__mro__)


def translate_vk_error(exc: BaseException, default=UnknownError, what: str = "") -> GpuJobError:
    """Map a driver exception onto the error taxonomy.

    Timeouts and device loss keep their own kinds regardless of the phase;
    every other result code becomes ``default``.
    """
    error_cls = default
    for cls in type(exc).__mro__:
        if cls.__name__ in _VK_EXCEPTION_KINDS:
            error_cls = _VK_EXCEPTION_KINDS[cls.__name__]
            break
    detail = str(exc) or type(exc).__name__
    message = f"{what} failed: {detail}" if what else detail
    return error_cls(message)


@contextmanager
def vk_errors(what: str, default=UnknownError):
    """Translate driver exceptions raised inside the block."""
    try:
        yield
    except GpuJobError:
        raise
    except Exception as exc:
        if not is_vk_exception(exc):
            raise
        raise translate_vk_error(exc, default, what) from exc
