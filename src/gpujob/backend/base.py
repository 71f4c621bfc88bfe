"""
Base constants and utilities for the Vulkan backend.
"""

import logging

_logger = logging.getLogger(__name__)

# Values from the Vulkan registry. They are used by the selection logic
# (memory types, queue families, debug-report severities) and stay valid
# when the loader is missing, e.g. on CI machines without a driver.
_VULKAN_FALLBACKS = {
    "VK_API_VERSION_1_0": 1 << 22,
    "VK_QUEUE_COMPUTE_BIT": 0x00000002,
    "VK_MEMORY_PROPERTY_DEVICE_LOCAL_BIT": 0x00000001,
    "VK_MEMORY_PROPERTY_HOST_VISIBLE_BIT": 0x00000002,
    "VK_MEMORY_PROPERTY_HOST_COHERENT_BIT": 0x00000004,
    "VK_MEMORY_PROPERTY_HOST_CACHED_BIT": 0x00000008,
    "VK_DEBUG_REPORT_INFORMATION_BIT_EXT": 0x00000001,
    "VK_DEBUG_REPORT_WARNING_BIT_EXT": 0x00000002,
    "VK_DEBUG_REPORT_PERFORMANCE_WARNING_BIT_EXT": 0x00000004,
    "VK_DEBUG_REPORT_ERROR_BIT_EXT": 0x00000008,
    "VK_DEBUG_REPORT_DEBUG_BIT_EXT": 0x00000010,
    "VK_EXT_DEBUG_REPORT_EXTENSION_NAME": "VK_EXT_debug_report",
}

try:
    import vulkan as vk

    VULKAN_AVAILABLE = True
except (ImportError, OSError) as exc:
    # The bindings raise OSError when no Vulkan loader library is installed.
    _logger.debug("Vulkan bindings unavailable: %s", exc)
    vk = None
    VULKAN_AVAILABLE = False

for _name, _default in _VULKAN_FALLBACKS.items():
    globals()[_name] = getattr(vk, _name, _default) if vk is not None else _default

HOST_VISIBLE_COHERENT = VK_MEMORY_PROPERTY_HOST_VISIBLE_BIT | VK_MEMORY_PROPERTY_HOST_COHERENT_BIT

# vkWaitForFences accepts a uint64 timeout; all ones means "no timeout".
INFINITE_TIMEOUT = 0xFFFFFFFFFFFFFFFF


def to_str(value) -> str:
    """Normalize a name coming back from the bindings (bytes or str, NUL padded)."""
    if value is None:
        return ""
    if vk is not None and not isinstance(value, (bytes, str)):
        # Debug-report callbacks receive ``char *`` cdata.
        value = vk.ffi.string(value)
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    return str(value).rstrip("\x00")
