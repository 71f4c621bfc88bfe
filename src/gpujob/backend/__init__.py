"""
Vulkan backend for a single compute dispatch: capability negotiation,
device setup, memory, descriptors, pipeline, dispatch, readback and teardown.
"""

from .base import HOST_VISIBLE_COHERENT, INFINITE_TIMEOUT, VULKAN_AVAILABLE
from .capabilities import CapabilityProbe
from .context import DeviceContext, ExecutionContext, select_physical_device, select_queue_family
from .descriptors import DescriptorBinding, ResourceBinder
from .diagnostics import DebugEvent, DiagnosticsChannel, FileSink, StreamSink
from .dispatch import CompletionToken, DispatchExecutor, WorkgroupCounts
from .errors import (
    DeviceLostError,
    GpuJobError,
    InitializationError,
    NoDeviceError,
    NoMemoryTypeError,
    NoQueueFamilyError,
    ResourceCreationError,
    UnknownError,
    WaitTimeoutError,
)
from .memory import DeviceResource, MemoryAllocator, select_memory_type
from .pipeline import ComputeProgram, PipelineBuilder, load_program
from .readback import MappedView, ReadbackMapper
from .teardown import ResourceArena

__all__ = [
    "VULKAN_AVAILABLE",
    "HOST_VISIBLE_COHERENT",
    "INFINITE_TIMEOUT",
    "CapabilityProbe",
    "DeviceContext",
    "ExecutionContext",
    "select_physical_device",
    "select_queue_family",
    "MemoryAllocator",
    "DeviceResource",
    "select_memory_type",
    "ResourceBinder",
    "DescriptorBinding",
    "PipelineBuilder",
    "ComputeProgram",
    "load_program",
    "DispatchExecutor",
    "CompletionToken",
    "WorkgroupCounts",
    "ReadbackMapper",
    "MappedView",
    "DiagnosticsChannel",
    "DebugEvent",
    "StreamSink",
    "FileSink",
    "ResourceArena",
    "GpuJobError",
    "InitializationError",
    "NoDeviceError",
    "NoQueueFamilyError",
    "NoMemoryTypeError",
    "ResourceCreationError",
    "WaitTimeoutError",
    "DeviceLostError",
    "UnknownError",
]
