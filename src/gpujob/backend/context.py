"""
Vulkan instance, physical device and logical device setup.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from .base import VK_API_VERSION_1_0, VK_QUEUE_COMPUTE_BIT, to_str, vk
from .errors import (
    InitializationError,
    NoDeviceError,
    NoQueueFamilyError,
    vk_errors,
)

logger = logging.getLogger(__name__)


def require_vulkan():
    if vk is None:
        raise InitializationError("Vulkan not available (install the vulkan package and a Vulkan loader)")


def accept_any(_device) -> bool:
    return True


def has_compute_queue(family) -> bool:
    """Default queue-family policy: at least one queue with compute capability."""
    return family.queueCount > 0 and bool(family.queueFlags & VK_QUEUE_COMPUTE_BIT)


def select_physical_device(devices: Sequence, predicate: Optional[Callable] = None):
    """Return the first device, in enumeration order, accepted by ``predicate``."""
    predicate = predicate or accept_any
    for device in devices:
        if predicate(device):
            return device
    raise NoDeviceError("No physical device found")


def select_queue_family(families: Sequence, predicate: Optional[Callable] = None) -> int:
    """Return the index of the first queue family accepted by ``predicate``."""
    predicate = predicate or has_compute_queue
    for index, family in enumerate(families):
        if predicate(family):
            return index
    raise NoQueueFamilyError("No valid queue family")


def device_name(device) -> str:
    return to_str(vk.vkGetPhysicalDeviceProperties(device).deviceName)


def describe_devices(devices: Sequence) -> list[str]:
    """Names of the enumerated physical devices, in order."""
    return [device_name(device) for device in devices]


def name_filter_policy(name_filter: Optional[str]):
    """Physical-device predicate requiring a case-insensitive name substring."""
    if not name_filter:
        return None

    def _predicate(device) -> bool:
        return name_filter.lower() in device_name(device).lower()

    return _predicate


def make_application_info(
    application_name: str = "gpujob",
    engine_name: str = "gpujob",
    api_version: int = VK_API_VERSION_1_0,
):
    return vk.VkApplicationInfo(
        sType=vk.VK_STRUCTURE_TYPE_APPLICATION_INFO,
        pApplicationName=application_name,
        applicationVersion=0,
        pEngineName=engine_name,
        engineVersion=0,
        apiVersion=api_version,
    )


@dataclass(frozen=True)
class ExecutionContext:
    """Handles every other object of the job is derived from."""

    instance: Any
    physical_device: Any
    device: Any
    queue: Any
    queue_family_index: int


class DeviceContext:
    """Creates the instance and derives a logical device with one compute queue."""

    def __init__(self):
        self.instance = None
        self.physical_device = None
        self.device = None
        self.queue = None
        self.queue_family_index = None

    def create(self, app_info, enabled_layers: Sequence[str], enabled_extensions: Sequence[str]):
        """Create the Vulkan instance."""
        require_vulkan()
        create_info = vk.VkInstanceCreateInfo(
            sType=vk.VK_STRUCTURE_TYPE_INSTANCE_CREATE_INFO,
            pApplicationInfo=app_info,
            enabledLayerCount=len(enabled_layers),
            ppEnabledLayerNames=list(enabled_layers),
            enabledExtensionCount=len(enabled_extensions),
            ppEnabledExtensionNames=list(enabled_extensions),
        )
        with vk_errors("vkCreateInstance", InitializationError):
            self.instance = vk.vkCreateInstance(create_info, None)
        if not self.instance:
            raise InitializationError("vkCreateInstance failed")
        return self.instance

    def enumerate_physical_devices(self) -> list:
        with vk_errors("vkEnumeratePhysicalDevices", InitializationError):
            return list(vk.vkEnumeratePhysicalDevices(self.instance) or [])

    def queue_families(self, physical_device) -> list:
        return list(vk.vkGetPhysicalDeviceQueueFamilyProperties(physical_device))

    def create_logical_device(
        self, physical_device, queue_family_index: int, enabled_layers: Sequence[str]
    ) -> ExecutionContext:
        """Create the logical device and fetch queue 0 of ``queue_family_index``."""
        queue_create_info = vk.VkDeviceQueueCreateInfo(
            sType=vk.VK_STRUCTURE_TYPE_DEVICE_QUEUE_CREATE_INFO,
            queueFamilyIndex=queue_family_index,
            queueCount=1,
            pQueuePriorities=[1.0],
        )
        # Device layers are deprecated but still passed for older loaders.
        device_create_info = vk.VkDeviceCreateInfo(
            sType=vk.VK_STRUCTURE_TYPE_DEVICE_CREATE_INFO,
            queueCreateInfoCount=1,
            pQueueCreateInfos=[queue_create_info],
            enabledLayerCount=len(enabled_layers),
            ppEnabledLayerNames=list(enabled_layers),
            enabledExtensionCount=0,
            ppEnabledExtensionNames=[],
        )
        with vk_errors("vkCreateDevice", InitializationError):
            self.device = vk.vkCreateDevice(physical_device, device_create_info, None)
        self.physical_device = physical_device
        self.queue = vk.vkGetDeviceQueue(self.device, queue_family_index, 0)
        self.queue_family_index = queue_family_index
        return ExecutionContext(
            instance=self.instance,
            physical_device=physical_device,
            device=self.device,
            queue=self.queue,
            queue_family_index=queue_family_index,
        )

    def destroy_device(self):
        if self.device:
            device = self.device
            self.device = None
            self.queue = None
            vk.vkDestroyDevice(device, None)

    def destroy_instance(self):
        if self.instance:
            instance = self.instance
            self.instance = None
            vk.vkDestroyInstance(instance, None)
