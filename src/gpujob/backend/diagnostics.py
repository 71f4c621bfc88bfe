"""
Validation-layer message forwarding through VK_EXT_debug_report.

Each attached sink gets its own debug-report callback. Attachments are
explicit handles: they are detached before the instance that owns them is
destroyed, never through a global callback table.
"""

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..utils.log import RunClock, format_header
from .base import (
    VK_DEBUG_REPORT_DEBUG_BIT_EXT,
    VK_DEBUG_REPORT_ERROR_BIT_EXT,
    VK_DEBUG_REPORT_INFORMATION_BIT_EXT,
    VK_DEBUG_REPORT_PERFORMANCE_WARNING_BIT_EXT,
    VK_DEBUG_REPORT_WARNING_BIT_EXT,
    to_str,
    vk,
)
from .errors import InitializationError, vk_errors

logger = logging.getLogger(__name__)

DEFAULT_FLAGS = (
    VK_DEBUG_REPORT_ERROR_BIT_EXT
    | VK_DEBUG_REPORT_WARNING_BIT_EXT
    | VK_DEBUG_REPORT_PERFORMANCE_WARNING_BIT_EXT
)
VERBOSE_FLAGS = DEFAULT_FLAGS | VK_DEBUG_REPORT_INFORMATION_BIT_EXT | VK_DEBUG_REPORT_DEBUG_BIT_EXT


def report_flags(verbose: bool = False) -> int:
    return VERBOSE_FLAGS if verbose else DEFAULT_FLAGS


@dataclass(frozen=True)
class DebugEvent:
    flags: int
    object_type: int
    object_handle: int
    location: int
    message_code: int
    layer_prefix: str
    message: str

    @property
    def source(self) -> str:
        return f"Vulkan::{self.layer_prefix}"


class StreamSink:
    """Writes diagnostics to a stream it does not own (stderr by default)."""

    def __init__(self, stream=None, clock: Optional[RunClock] = None):
        self.stream = stream if stream is not None else sys.stderr
        self.clock = clock or RunClock()

    def handle(self, event: DebugEvent):
        self.stream.write(format_header(self.clock, event.source) + event.message + "\n")
        self.stream.flush()

    def close(self):
        pass


class FileSink(StreamSink):
    """Writes diagnostics to a file owned by the sink, closed on detach."""

    def __init__(self, path, clock: Optional[RunClock] = None):
        self.path = Path(path)
        super().__init__(open(self.path, "w", encoding="utf-8"), clock)

    def close(self):
        if not self.stream.closed:
            self.stream.close()


class DiagnosticsAttachment:
    """Capability token for one registered callback; ``detach`` unregisters it."""

    def __init__(self, instance, handle, destroy_fn, sink, bridge):
        self._instance = instance
        self._handle = handle
        self._destroy_fn = destroy_fn
        self.sink = sink
        # The bindings only keep a C pointer to the bridge.
        self._bridge = bridge

    @property
    def attached(self) -> bool:
        return self._handle is not None

    def detach(self):
        if self._handle is None:
            return
        handle = self._handle
        self._handle = None
        try:
            self._destroy_fn(self._instance, handle, None)
        finally:
            self.sink.close()
            self._bridge = None


def make_bridge(sink, abort_flags: int = 0):
    """Build the C-callable forwarding driver messages to ``sink``.

    The bridge answers "continue" (False) unless the message carries one of
    the caller-chosen ``abort_flags``. It never raises into the driver.
    """

    def _bridge(flags, object_type, obj, location, message_code, layer_prefix, message, user_data=None):
        event = None
        try:
            event = DebugEvent(
                flags=int(flags),
                object_type=int(object_type),
                object_handle=int(obj),
                location=int(location),
                message_code=int(message_code),
                layer_prefix=to_str(layer_prefix),
                message=to_str(message),
            )
            sink.handle(event)
        except Exception as exc:
            logger.error("Diagnostics message dropped by %r: %s", sink, exc)
        if event is None:
            return False
        return bool(event.flags & abort_flags)

    return _bridge


class DiagnosticsChannel:
    """Attaches debug-report sinks to one instance."""

    def __init__(self, instance):
        self.instance = instance
        self.attachments: list[DiagnosticsAttachment] = []

    def _proc(self, name: str):
        try:
            fn = vk.vkGetInstanceProcAddr(self.instance, name)
        except Exception as exc:
            raise InitializationError(f"Could not load {name}") from exc
        if not fn:
            raise InitializationError(f"Could not load {name}")
        return fn

    def attach(self, sink, verbose: bool = False, abort_flags: int = 0) -> DiagnosticsAttachment:
        """Register ``sink`` for errors, warnings and performance warnings.

        With ``verbose`` information and debug messages are forwarded too.
        """
        create_fn = self._proc("vkCreateDebugReportCallbackEXT")
        destroy_fn = self._proc("vkDestroyDebugReportCallbackEXT")

        bridge = make_bridge(sink, abort_flags)
        create_info = vk.VkDebugReportCallbackCreateInfoEXT(
            sType=vk.VK_STRUCTURE_TYPE_DEBUG_REPORT_CALLBACK_CREATE_INFO_EXT,
            flags=report_flags(verbose),
            pfnCallback=bridge,
        )
        with vk_errors("vkCreateDebugReportCallbackEXT", InitializationError):
            handle = create_fn(self.instance, create_info, None)

        attachment = DiagnosticsAttachment(self.instance, handle, destroy_fn, sink, bridge)
        self.attachments.append(attachment)
        return attachment

    def detach_all(self):
        """Detach every sink, newest first. Must run before the instance is destroyed."""
        first_error = None
        while self.attachments:
            attachment = self.attachments.pop()
            try:
                attachment.detach()
            except Exception as exc:
                logger.error("Failed to detach diagnostics sink: %s", exc)
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error
