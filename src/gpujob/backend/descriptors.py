"""
Descriptor-set layout, pool and set for a single storage buffer.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .base import vk
from .errors import ResourceCreationError, vk_errors

logger = logging.getLogger(__name__)

STORAGE_BUFFER_BINDING = 0


@dataclass
class DescriptorBinding:
    """Pool, sets and layouts built together.

    Pipelines must be created from ``layouts`` of the same bundle the sets
    were allocated from, and the bundle must outlive them.
    """

    pool: Any = None
    sets: tuple = ()
    layouts: tuple = ()

    def destroy(self, device):
        for layout in self.layouts:
            vk.vkDestroyDescriptorSetLayout(device, layout, None)
        self.layouts = ()
        # Sets are freed together with their pool.
        self.sets = ()
        if self.pool:
            vk.vkDestroyDescriptorPool(device, self.pool, None)
            self.pool = None


class ResourceBinder:
    def __init__(self, device):
        self.device = device

    def build(self, buffer, byte_size: int, buffer_size: Optional[int] = None) -> DescriptorBinding:
        """Describe ``buffer[0, byte_size)`` as storage buffer binding 0 of set 0."""
        if byte_size <= 0:
            raise ValueError(f"Descriptor range must be positive, got {byte_size}")
        if buffer_size is not None and byte_size > buffer_size:
            raise ValueError(
                f"Descriptor range {byte_size} exceeds buffer size {buffer_size}"
            )

        binding = DescriptorBinding()
        try:
            layout_binding = vk.VkDescriptorSetLayoutBinding(
                binding=STORAGE_BUFFER_BINDING,
                descriptorType=vk.VK_DESCRIPTOR_TYPE_STORAGE_BUFFER,
                descriptorCount=1,
                stageFlags=vk.VK_SHADER_STAGE_COMPUTE_BIT,
            )
            layout_info = vk.VkDescriptorSetLayoutCreateInfo(
                sType=vk.VK_STRUCTURE_TYPE_DESCRIPTOR_SET_LAYOUT_CREATE_INFO,
                bindingCount=1,
                pBindings=[layout_binding],
            )
            with vk_errors("vkCreateDescriptorSetLayout", ResourceCreationError):
                binding.layouts = (
                    vk.vkCreateDescriptorSetLayout(self.device, layout_info, None),
                )

            # Exactly one set holding one storage buffer.
            pool_sizes = [
                vk.VkDescriptorPoolSize(type=vk.VK_DESCRIPTOR_TYPE_STORAGE_BUFFER, descriptorCount=1)
            ]
            pool_info = vk.VkDescriptorPoolCreateInfo(
                sType=vk.VK_STRUCTURE_TYPE_DESCRIPTOR_POOL_CREATE_INFO,
                maxSets=1,
                poolSizeCount=len(pool_sizes),
                pPoolSizes=pool_sizes,
            )
            with vk_errors("vkCreateDescriptorPool", ResourceCreationError):
                binding.pool = vk.vkCreateDescriptorPool(self.device, pool_info, None)

            alloc_info = vk.VkDescriptorSetAllocateInfo(
                sType=vk.VK_STRUCTURE_TYPE_DESCRIPTOR_SET_ALLOCATE_INFO,
                descriptorPool=binding.pool,
                descriptorSetCount=len(binding.layouts),
                pSetLayouts=list(binding.layouts),
            )
            with vk_errors("vkAllocateDescriptorSets", ResourceCreationError):
                binding.sets = tuple(vk.vkAllocateDescriptorSets(self.device, alloc_info))

            buffer_info = vk.VkDescriptorBufferInfo(buffer=buffer, offset=0, range=byte_size)
            write = vk.VkWriteDescriptorSet(
                sType=vk.VK_STRUCTURE_TYPE_WRITE_DESCRIPTOR_SET,
                dstSet=binding.sets[0],
                dstBinding=STORAGE_BUFFER_BINDING,
                dstArrayElement=0,
                descriptorCount=1,
                descriptorType=vk.VK_DESCRIPTOR_TYPE_STORAGE_BUFFER,
                pBufferInfo=[buffer_info],
            )
            vk.vkUpdateDescriptorSets(self.device, 1, [write], 0, None)
        except Exception:
            binding.destroy(self.device)
            raise

        return binding
