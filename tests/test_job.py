"""Tests for the ComputeJob phase machine, driven against the fake driver."""

import logging

import numpy as np
import pytest

from gpujob.backend.capabilities import CapabilityProbe
from gpujob.backend.errors import (
    DeviceLostError,
    NoDeviceError,
    PhaseError,
    ResourceCreationError,
    WaitTimeoutError,
)
from gpujob.job import ComputeJob, Phase

from conftest import VkError, VkErrorDeviceLost, VkTimeout, call_names, release_calls

FULL_RUN_RELEASES = [
    "vkFreeCommandBuffers",
    "vkDestroyCommandPool",
    "vkDestroyShaderModule",
    "vkDestroyPipelineLayout",
    "vkDestroyPipeline",
    "vkDestroyDescriptorSetLayout",
    "vkDestroyDescriptorPool",
    "vkDestroyBuffer",
    "vkFreeMemory",
    "vkDestroyDevice",
    "vkDestroyDebugReportCallbackEXT",
    "vkDestroyInstance",
]


class RecordingSink:
    def __init__(self):
        self.events = []
        self.closed = False

    def handle(self, event):
        self.events.append(event)

    def close(self):
        self.closed = True


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def job(fake_vk, job_config, sink):
    return ComputeJob(job_config, sinks=[(sink, False)])


class TestFullRun:
    def test_result_length(self, job):
        result = job.run()
        assert isinstance(result, np.ndarray)
        assert len(result) == 128 * 128
        assert job.phase == Phase.DESTROYED

    def test_dispatch_grid(self, job, fake_vk):
        job.run()
        fake_vk.vkCmdDispatch.assert_called_once_with("command_buffer", 4, 4, 1)

    def test_teardown_is_exact_reverse_of_creation(self, job, fake_vk):
        job.run()
        releases = release_calls(fake_vk)
        # The fence is released by the wait and the view is unmapped after the copy.
        assert releases[:2] == ["vkDestroyFence", "vkUnmapMemory"]
        assert releases[2:] == FULL_RUN_RELEASES

    def test_result_is_a_copy(self, job, fake_vk):
        fake_vk.device_memory[:4] = np.float32(0.25).tobytes()
        result = job.run()
        assert result[0] == np.float32(0.25)
        assert fake_vk.vkUnmapMemory.call_count == 1

    def test_consumer_sees_mapped_view(self, job):
        seen = []
        job.run(consumer=lambda view: seen.append(len(view)))
        assert seen == [128 * 128]

    def test_readback_after_wait(self, job, fake_vk):
        job.run()
        names = call_names(fake_vk, ("vkQueueSubmit", "vkWaitForFences", "vkMapMemory"))
        assert names == ["vkQueueSubmit", "vkWaitForFences", "vkMapMemory"]

    def test_sink_closed_on_teardown(self, job, sink):
        job.run()
        assert sink.closed

    def test_context_manager(self, fake_vk, job_config, sink):
        with ComputeJob(job_config, sinks=[(sink, False)]) as job:
            job.create_context()
            job.create_device()
        assert job.phase == Phase.DESTROYED
        assert release_calls(fake_vk) == FULL_RUN_RELEASES[-3:]


class TestPhases:
    def test_out_of_order(self, job):
        with pytest.raises(PhaseError):
            job.dispatch()
        assert job.phase == Phase.UNINITIALIZED

    def test_phases_advance(self, job):
        job.create_context()
        assert job.phase == Phase.CONTEXT_READY
        job.create_device()
        assert job.phase == Phase.DEVICE_READY
        job.allocate_resources()
        assert job.phase == Phase.RESOURCES_ALLOCATED
        job.build_pipeline()
        assert job.phase == Phase.PIPELINE_READY
        job.dispatch()
        assert job.phase == Phase.DISPATCHED
        job.complete()
        assert job.phase == Phase.COMPLETED
        job.destroy()
        job.destroy()
        assert job.phase == Phase.DESTROYED

    def test_no_reentry(self, job):
        job.create_context()
        with pytest.raises(PhaseError):
            job.create_context()
        job.destroy()

    def test_pipeline_uses_binding_layouts(self, job, fake_vk):
        job.create_context()
        job.create_device()
        job.allocate_resources()
        job.build_pipeline()
        kwargs = fake_vk.VkPipelineLayoutCreateInfo.call_args.kwargs
        assert kwargs["pSetLayouts"] == list(job.binding.layouts)
        job.destroy()


class TestPartialFailure:
    def test_no_device_tears_down_context_only(self, job, fake_vk):
        fake_vk.vkEnumeratePhysicalDevices.return_value = []
        with pytest.raises(NoDeviceError, match="No physical device found"):
            job.run()
        assert release_calls(fake_vk) == ["vkDestroyDebugReportCallbackEXT", "vkDestroyInstance"]
        assert job.phase == Phase.DESTROYED

    def test_pipeline_failure(self, job, fake_vk):
        """Only the phases that completed are torn down, newest first."""
        fake_vk.vkCreateComputePipelines.side_effect = VkError("invalid program")
        with pytest.raises(ResourceCreationError):
            job.run()
        assert release_calls(fake_vk) == [
            "vkDestroyShaderModule",
            "vkDestroyPipelineLayout",
        ] + FULL_RUN_RELEASES[5:]
        fake_vk.vkCreateCommandPool.assert_not_called()

    def test_wait_timeout_idles_device_before_release(self, fake_vk, job_config, sink):
        fake_vk.vkWaitForFences.side_effect = VkTimeout()
        job_config.wait_timeout_ns = 1000
        job = ComputeJob(job_config, sinks=[(sink, False)])
        with pytest.raises(WaitTimeoutError):
            job.run()
        names = call_names(fake_vk, ("vkDeviceWaitIdle", "vkDestroyFence", "vkFreeCommandBuffers"))
        assert names == ["vkDeviceWaitIdle", "vkDestroyFence", "vkFreeCommandBuffers"]
        fake_vk.vkMapMemory.assert_not_called()

    def test_device_lost_releases_every_phase(self, fake_vk, job_config, sink):
        """Losing the device mid-wait still frees the command objects and everything older."""
        fake_vk.vkWaitForFences.side_effect = VkErrorDeviceLost()
        fake_vk.vkDeviceWaitIdle.side_effect = VkErrorDeviceLost()
        job = ComputeJob(job_config, sinks=[(sink, False)])
        with pytest.raises(DeviceLostError):
            job.run()
        assert release_calls(fake_vk) == ["vkDestroyFence"] + FULL_RUN_RELEASES
        assert job.phase == Phase.DESTROYED

    def test_device_index_out_of_range(self, fake_vk, job_config, sink):
        job_config.device_index = 3
        with pytest.raises(NoDeviceError):
            ComputeJob(job_config, sinks=[(sink, False)]).run()

    def test_device_name_filter(self, fake_vk, job_config, sink):
        job_config.device_name = "radeon"
        with pytest.raises(NoDeviceError):
            ComputeJob(job_config, sinks=[(sink, False)]).run()


class TestDiagnosticsNegotiation:
    def test_missing_layer_runs_without_diagnostics(self, fake_vk, job_config, sink, caplog):
        probe = CapabilityProbe(lambda: [], lambda: ["VK_EXT_debug_report"])
        job = ComputeJob(job_config, probe=probe, sinks=[(sink, False)])
        with caplog.at_level(logging.WARNING, logger="gpujob"):
            result = job.run()
        assert len(result) == 128 * 128
        assert "Validation layer is not available!" in caplog.text
        fake_vk.vkGetInstanceProcAddr.assert_not_called()
        assert fake_vk.VkInstanceCreateInfo.call_args.kwargs["enabledLayerCount"] == 0

    def test_disabled_diagnostics_skip_probe(self, fake_vk, job_config, sink):
        def _fail():
            pytest.fail("capabilities probed with diagnostics disabled")

        job_config.diagnostics = False
        ComputeJob(job_config, probe=CapabilityProbe(_fail, _fail), sinks=[(sink, False)]).run()
        assert "vkDestroyDebugReportCallbackEXT" not in release_calls(fake_vk)

    def test_attach_failure_is_not_fatal(self, fake_vk, job_config, sink, caplog):
        fake_vk.vkCreateDebugReportCallbackEXT.side_effect = VkError("no callback")
        job = ComputeJob(job_config, sinks=[(sink, False)])
        with caplog.at_level(logging.WARNING, logger="gpujob"):
            job.run()
        assert "Diagnostics sink not attached" in caplog.text
        assert sink.closed

    def test_abort_policy(self, fake_vk, job_config, sink):
        job_config.abort_on_validation_error = True
        job = ComputeJob(job_config, sinks=[(sink, False)])
        job.create_context()
        bridge = fake_vk.VkDebugReportCallbackCreateInfoEXT.call_args.kwargs["pfnCallback"]
        assert bridge(0x8, 0, 0, 0, 0, "L", "m") is True
        assert bridge(0x2, 0, 0, 0, 0, "L", "m") is False
        job.destroy()
