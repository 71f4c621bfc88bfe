"""
Pytest configuration and fixtures for gpujob tests.

Driver-facing code is exercised against a MagicMock standing in for the
``vulkan`` module: handles are plain strings, call order is visible through
``mock_calls`` and mapped memory is a bytearray.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from gpujob.backend import (
    capabilities,
    context,
    descriptors,
    diagnostics,
    dispatch,
    memory,
    pipeline,
    readback,
)
from gpujob.backend.base import VULKAN_AVAILABLE
from gpujob.config import JobConfig


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "gpu: marks tests that require Vulkan/GPU (deselect with '-m \"not gpu\"')"
    )


class VkException(Exception):
    pass


class VkError(Exception):
    pass


class VkTimeout(VkException):
    pass


class VkErrorDeviceLost(VkError):
    pass


class VkErrorOutOfDeviceMemory(VkError):
    pass


class VkErrorInitializationFailed(VkError):
    pass


BACKEND_MODULES = (capabilities, context, descriptors, diagnostics, dispatch, memory, pipeline, readback)

BUFFER_BYTES = 128 * 128 * 4

DEVICE_LOCAL = 0x1
HOST_VISIBLE = 0x2
HOST_COHERENT = 0x4


def make_fake_vulkan():
    fake = MagicMock(name="vulkan")
    fake.VK_TRUE = 1
    fake.VK_TIMEOUT = 2
    fake.VK_NULL_HANDLE = None
    for exc in (
        VkException,
        VkError,
        VkTimeout,
        VkErrorDeviceLost,
        VkErrorOutOfDeviceMemory,
        VkErrorInitializationFailed,
    ):
        setattr(fake, exc.__name__, exc)

    fake.vkEnumerateInstanceLayerProperties.return_value = [
        SimpleNamespace(layerName="VK_LAYER_KHRONOS_validation")
    ]
    fake.vkEnumerateInstanceExtensionProperties.return_value = [
        SimpleNamespace(extensionName="VK_KHR_surface"),
        SimpleNamespace(extensionName="VK_EXT_debug_report"),
    ]

    fake.vkCreateInstance.return_value = "instance"
    fake.vkEnumeratePhysicalDevices.return_value = ["gpu0"]
    fake.vkGetPhysicalDeviceProperties.return_value = SimpleNamespace(deviceName=b"Fake GPU\x00")
    fake.vkGetPhysicalDeviceQueueFamilyProperties.return_value = [
        SimpleNamespace(queueCount=1, queueFlags=0x1),  # graphics only
        SimpleNamespace(queueCount=2, queueFlags=0x3),  # graphics + compute
    ]
    fake.vkCreateDevice.return_value = "device"
    fake.vkGetDeviceQueue.return_value = "queue"

    fake.vkCreateBuffer.return_value = "buffer"
    fake.vkGetBufferMemoryRequirements.return_value = SimpleNamespace(
        size=BUFFER_BYTES, memoryTypeBits=0b11
    )
    fake.vkGetPhysicalDeviceMemoryProperties.return_value = SimpleNamespace(
        memoryTypeCount=2,
        memoryTypes=[
            SimpleNamespace(propertyFlags=DEVICE_LOCAL),
            SimpleNamespace(propertyFlags=HOST_VISIBLE | HOST_COHERENT),
        ],
    )
    fake.vkAllocateMemory.return_value = "memory"

    fake.vkCreateDescriptorSetLayout.return_value = "set_layout"
    fake.vkCreateDescriptorPool.return_value = "descriptor_pool"
    fake.vkAllocateDescriptorSets.return_value = ["descriptor_set"]

    fake.vkCreateShaderModule.return_value = "shader_module"
    fake.vkCreatePipelineLayout.return_value = "pipeline_layout"
    fake.vkCreateComputePipelines.return_value = ["pipeline"]

    fake.vkCreateCommandPool.return_value = "command_pool"
    fake.vkAllocateCommandBuffers.return_value = ["command_buffer"]
    fake.vkCreateFence.return_value = "fence"
    fake.vkWaitForFences.return_value = 0

    fake.device_memory = bytearray(BUFFER_BYTES)

    def _map(device, mem, offset, size, flags):
        return memoryview(fake.device_memory)[offset : offset + size]

    fake.vkMapMemory.side_effect = _map

    fake.vkCreateDebugReportCallbackEXT.return_value = "debug_callback"
    procs = {
        "vkCreateDebugReportCallbackEXT": fake.vkCreateDebugReportCallbackEXT,
        "vkDestroyDebugReportCallbackEXT": fake.vkDestroyDebugReportCallbackEXT,
    }
    fake.vkGetInstanceProcAddr.side_effect = lambda instance, name: procs[name]
    return fake


def call_names(fake, prefixes=("vk",)) -> list:
    """Names of the driver calls made on ``fake``, in order."""
    names = [c[0] for c in fake.mock_calls]
    return [n for n in names if n.startswith(prefixes) and "." not in n]


def release_calls(fake) -> list:
    return call_names(
        fake, ("vkDestroy", "vkFree", "vkUnmapMemory")
    )


@pytest.fixture
def fake_vk(monkeypatch):
    """Install a fake ``vulkan`` module into every backend module."""
    fake = make_fake_vulkan()
    for module in BACKEND_MODULES:
        monkeypatch.setattr(module, "vk", fake)
    return fake


@pytest.fixture
def program_file(tmp_path):
    """A word-aligned stand-in for a SPIR-V program."""
    path = tmp_path / "kernel.spv"
    path.write_bytes(b"\x03\x02\x23\x07" + b"\x00" * 12)
    return path


@pytest.fixture
def job_config(program_file, tmp_path):
    return JobConfig(
        program=program_file,
        program_source=None,
        diagnostics_log=None,
        output=str(tmp_path / "array.txt"),
    )


@pytest.fixture
def gpu_available():
    """Skips unless a real Vulkan loader is importable."""
    if not VULKAN_AVAILABLE:
        pytest.skip("Vulkan not available")
