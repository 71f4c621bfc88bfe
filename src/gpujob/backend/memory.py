"""
Buffer creation, memory-type selection and allocation.

Every buffer gets its own allocation bound at offset 0; there is no
sub-allocation.
"""

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from .base import HOST_VISIBLE_COHERENT, vk
from .errors import NoMemoryTypeError, ResourceCreationError, vk_errors

logger = logging.getLogger(__name__)


def select_memory_type(requirements_bitmask: int, required_flags: int, heap_table: Sequence) -> int:
    """Find the first memory type usable for a resource.

    Args:
        requirements_bitmask: ``VkMemoryRequirements.memoryTypeBits``; bit ``i``
            set means type ``i`` may back the resource.
        required_flags: property flags the type must include.
        heap_table: memory types in index order, each with ``propertyFlags``.

    Returns:
        Index of the first type allowed by the bitmask whose flags are a
        superset of ``required_flags``.
    """
    for i, memory_type in enumerate(heap_table):
        allowed = bool(requirements_bitmask & (1 << i))
        if allowed and (memory_type.propertyFlags & required_flags) == required_flags:
            return i
    raise NoMemoryTypeError(
        f"Failed to find memory type (type bits 0x{requirements_bitmask:x}, "
        f"flags 0x{required_flags:x})"
    )


@dataclass
class DeviceResource:
    """A storage buffer and the allocation bound to it."""

    buffer: Any = None
    memory: Any = None
    size: int = 0
    allocation_size: int = 0
    memory_type_index: int = -1

    def destroy(self, device):
        if self.buffer:
            vk.vkDestroyBuffer(device, self.buffer, None)
            self.buffer = None
        if self.memory:
            vk.vkFreeMemory(device, self.memory, None)
            self.memory = None


class MemoryAllocator:
    """Allocates device memory for buffers of one logical device."""

    def __init__(self, device, physical_device):
        self.device = device
        self.physical_device = physical_device
        self._memory_types = None

    def memory_types(self) -> list:
        """Memory types of the physical device, in index order."""
        if self._memory_types is None:
            props = vk.vkGetPhysicalDeviceMemoryProperties(self.physical_device)
            self._memory_types = [props.memoryTypes[i] for i in range(props.memoryTypeCount)]
        return self._memory_types

    def create_buffer(self, size: int):
        if size <= 0:
            raise ValueError(f"Buffer size must be positive, got {size}")
        buffer_info = vk.VkBufferCreateInfo(
            sType=vk.VK_STRUCTURE_TYPE_BUFFER_CREATE_INFO,
            size=size,
            usage=vk.VK_BUFFER_USAGE_STORAGE_BUFFER_BIT,
            sharingMode=vk.VK_SHARING_MODE_EXCLUSIVE,
        )
        with vk_errors("vkCreateBuffer", ResourceCreationError):
            return vk.vkCreateBuffer(self.device, buffer_info, None)

    def allocate(self, size: int, type_index: int):
        alloc_info = vk.VkMemoryAllocateInfo(
            sType=vk.VK_STRUCTURE_TYPE_MEMORY_ALLOCATE_INFO,
            allocationSize=size,
            memoryTypeIndex=type_index,
        )
        with vk_errors("vkAllocateMemory", ResourceCreationError):
            return vk.vkAllocateMemory(self.device, alloc_info, None)

    def bind(self, buffer, memory, offset: int = 0):
        if offset != 0:
            raise ValueError("Sub-allocation is not supported; bind offset must be 0")
        with vk_errors("vkBindBufferMemory", ResourceCreationError):
            vk.vkBindBufferMemory(self.device, buffer, memory, offset)

    def create_resource(self, size: int, required_flags: int = HOST_VISIBLE_COHERENT) -> DeviceResource:
        """Create a storage buffer of ``size`` bytes backed by its own allocation.

        On failure the partially created objects are released before raising.
        """
        resource = DeviceResource(size=size)
        try:
            resource.buffer = self.create_buffer(size)
            mem_req = vk.vkGetBufferMemoryRequirements(self.device, resource.buffer)
            resource.memory_type_index = select_memory_type(
                mem_req.memoryTypeBits, required_flags, self.memory_types()
            )
            resource.allocation_size = mem_req.size
            resource.memory = self.allocate(mem_req.size, resource.memory_type_index)
            self.bind(resource.buffer, resource.memory, 0)
        except Exception:
            resource.destroy(self.device)
            raise
        logger.debug(
            "Allocated %d bytes (requested %d) from memory type %d",
            resource.allocation_size,
            size,
            resource.memory_type_index,
        )
        return resource
