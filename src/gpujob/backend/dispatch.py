"""
One-shot command recording, submission and completion tokens.

Submission is asynchronous: the device may still be running the dispatch
when :meth:`DispatchExecutor.record_and_submit` returns. Only one submission
is in flight at a time. The queue must not be submitted to from several
threads at once; callers sharing a queue serialize access themselves.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from .base import INFINITE_TIMEOUT, vk
from .errors import (
    DeviceLostError,
    ResourceCreationError,
    TokenConsumedError,
    UnknownError,
    WaitTimeoutError,
    vk_errors,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkgroupCounts:
    x: int
    y: int = 1
    z: int = 1

    def __post_init__(self):
        for axis, value in (("x", self.x), ("y", self.y), ("z", self.z)):
            if int(value) != value or value < 1:
                raise ValueError(f"Workgroup count {axis} must be a positive integer, got {value}")

    @classmethod
    def coerce(cls, value) -> "WorkgroupCounts":
        """Accept an int, a 1 to 3 element tuple/list, or a WorkgroupCounts."""
        if isinstance(value, cls):
            return value
        if isinstance(value, (tuple, list)):
            return cls(*value)
        return cls(value)

    @property
    def total(self) -> int:
        return self.x * self.y * self.z


@dataclass
class DispatchUnit:
    """Command pool and the command buffers allocated from it."""

    command_pool: Any = None
    command_buffers: tuple = ()

    def destroy(self, device):
        if self.command_buffers:
            vk.vkFreeCommandBuffers(
                device, self.command_pool, len(self.command_buffers), list(self.command_buffers)
            )
            self.command_buffers = ()
        if self.command_pool:
            vk.vkDestroyCommandPool(device, self.command_pool, None)
            self.command_pool = None


class CompletionToken:
    """Wraps the fence of one submission.

    The fence is destroyed once :meth:`wait` observes it signaled. A timed
    out wait keeps the fence so the caller may wait again.
    """

    def __init__(self, device, fence, on_complete=None):
        self._device = device
        self._fence = fence
        self._on_complete = on_complete
        self.completed = False

    @property
    def consumed(self) -> bool:
        return self._fence is None

    def wait(self, timeout: int = INFINITE_TIMEOUT):
        """Block until the submission finishes or ``timeout`` nanoseconds pass."""
        if self._fence is None:
            raise TokenConsumedError("Completion token already waited on; its fence is destroyed")
        try:
            with vk_errors("vkWaitForFences", UnknownError):
                result = vk.vkWaitForFences(self._device, 1, [self._fence], vk.VK_TRUE, timeout)
            # Older bindings return VK_TIMEOUT instead of raising VkTimeout.
            if result == vk.VK_TIMEOUT:
                raise WaitTimeoutError(f"vkWaitForFences timed out after {timeout} ns")
        except WaitTimeoutError:
            logger.warning("Dispatch did not complete within %d ns", timeout)
            raise
        except DeviceLostError:
            logger.error("Device lost while waiting for dispatch")
            raise

        fence = self._fence
        self._fence = None
        vk.vkDestroyFence(self._device, fence, None)
        self.completed = True
        if self._on_complete is not None:
            self._on_complete(self)

    def release(self):
        """Destroy the fence without waiting.

        Only valid when the submission is known to be finished or was never
        executed (e.g. the device is being torn down after an idle wait).
        """
        if self._fence is not None:
            fence = self._fence
            self._fence = None
            vk.vkDestroyFence(self._device, fence, None)


class DispatchExecutor:
    """Records and submits one compute dispatch at a time."""

    def __init__(self, device):
        self.device = device
        self.unit: Optional[DispatchUnit] = None
        self._in_flight: Optional[CompletionToken] = None

    def _create_unit(self, queue_family_index: int) -> DispatchUnit:
        unit = DispatchUnit()
        try:
            pool_info = vk.VkCommandPoolCreateInfo(
                sType=vk.VK_STRUCTURE_TYPE_COMMAND_POOL_CREATE_INFO,
                queueFamilyIndex=queue_family_index,
            )
            with vk_errors("vkCreateCommandPool", ResourceCreationError):
                unit.command_pool = vk.vkCreateCommandPool(self.device, pool_info, None)

            alloc_info = vk.VkCommandBufferAllocateInfo(
                sType=vk.VK_STRUCTURE_TYPE_COMMAND_BUFFER_ALLOCATE_INFO,
                commandPool=unit.command_pool,
                level=vk.VK_COMMAND_BUFFER_LEVEL_PRIMARY,
                commandBufferCount=1,
            )
            with vk_errors("vkAllocateCommandBuffers", ResourceCreationError):
                unit.command_buffers = tuple(vk.vkAllocateCommandBuffers(self.device, alloc_info))
        except Exception:
            unit.destroy(self.device)
            raise
        return unit

    def record_and_submit(
        self,
        pipeline,
        pipeline_layout,
        descriptor_sets: Sequence,
        queue_family_index: int,
        queue,
        workgroup_counts,
    ) -> CompletionToken:
        """Record bind/dispatch into a fresh command buffer and submit it.

        The returned token must be waited on before the command buffer, the
        fence or the bound memory are touched again.
        """
        if self._in_flight is not None:
            raise RuntimeError("A submission is already in flight; wait on its token first")
        if self.unit is not None:
            raise RuntimeError("DispatchExecutor records a single one-shot command buffer")
        groups = WorkgroupCounts.coerce(workgroup_counts)

        self.unit = self._create_unit(queue_family_index)
        command_buffer = self.unit.command_buffers[0]

        with vk_errors("command buffer recording", ResourceCreationError):
            begin_info = vk.VkCommandBufferBeginInfo(
                sType=vk.VK_STRUCTURE_TYPE_COMMAND_BUFFER_BEGIN_INFO,
                flags=vk.VK_COMMAND_BUFFER_USAGE_ONE_TIME_SUBMIT_BIT,
            )
            vk.vkBeginCommandBuffer(command_buffer, begin_info)
            vk.vkCmdBindPipeline(command_buffer, vk.VK_PIPELINE_BIND_POINT_COMPUTE, pipeline)
            vk.vkCmdBindDescriptorSets(
                command_buffer,
                vk.VK_PIPELINE_BIND_POINT_COMPUTE,
                pipeline_layout,
                0,
                len(descriptor_sets),
                list(descriptor_sets),
                0,
                None,
            )
            vk.vkCmdDispatch(command_buffer, groups.x, groups.y, groups.z)
            vk.vkEndCommandBuffer(command_buffer)

        fence_info = vk.VkFenceCreateInfo(sType=vk.VK_STRUCTURE_TYPE_FENCE_CREATE_INFO, flags=0)
        with vk_errors("vkCreateFence", ResourceCreationError):
            fence = vk.vkCreateFence(self.device, fence_info, None)

        submit_info = vk.VkSubmitInfo(
            sType=vk.VK_STRUCTURE_TYPE_SUBMIT_INFO,
            waitSemaphoreCount=0,
            commandBufferCount=1,
            pCommandBuffers=[command_buffer],
            signalSemaphoreCount=0,
        )
        try:
            with vk_errors("vkQueueSubmit", ResourceCreationError):
                vk.vkQueueSubmit(queue, 1, [submit_info], fence)
        except Exception:
            vk.vkDestroyFence(self.device, fence, None)
            raise

        logger.debug("Submitted dispatch %dx%dx%d", groups.x, groups.y, groups.z)
        self._in_flight = CompletionToken(self.device, fence, on_complete=self._completed)
        return self._in_flight

    def _completed(self, token: CompletionToken):
        if token is self._in_flight:
            self._in_flight = None

    @property
    def in_flight(self) -> Optional[CompletionToken]:
        return self._in_flight

    def destroy(self):
        """Release the pending fence (if any) and the command objects.

        Waits for the device to go idle first so an unwaited submission is
        never torn down while executing.
        """
        try:
            if self._in_flight is not None:
                token = self._in_flight
                self._in_flight = None
                try:
                    vk.vkDeviceWaitIdle(self.device)
                finally:
                    token.release()
        finally:
            # A failed idle wait (e.g. device lost) still frees the command objects.
            if self.unit is not None:
                unit = self.unit
                self.unit = None
                unit.destroy(self.device)
