"""
The compute job as an explicit phase machine.

    UNINITIALIZED -> CONTEXT_READY -> DEVICE_READY -> RESOURCES_ALLOCATED
        -> PIPELINE_READY -> DISPATCHED -> COMPLETED -> DESTROYED

Each phase is entered only from the one before it. Every driver object is
registered in a :class:`ResourceArena` as soon as it exists, so a failure in
any phase tears down exactly the phases that completed, newest first.
"""

import logging
from enum import IntEnum
from functools import partial
from pathlib import Path
from typing import Callable, Optional

import numpy as np

from .backend.base import VK_DEBUG_REPORT_ERROR_BIT_EXT
from .backend.capabilities import CapabilityProbe
from .backend.context import (
    DeviceContext,
    ExecutionContext,
    describe_devices,
    device_name,
    make_application_info,
    name_filter_policy,
    require_vulkan,
    select_physical_device,
    select_queue_family,
)
from .backend.descriptors import DescriptorBinding, ResourceBinder
from .backend.diagnostics import DiagnosticsChannel, FileSink, StreamSink
from .backend.dispatch import CompletionToken, DispatchExecutor
from .backend.errors import PhaseError, TeardownError
from .backend.memory import DeviceResource, MemoryAllocator
from .backend.pipeline import ComputeProgram, PipelineBuilder, load_program
from .backend.readback import MappedView, ReadbackMapper
from .backend.teardown import ResourceArena
from .config import JobConfig
from .utils.log import RunClock

logger = logging.getLogger(__name__)


class Phase(IntEnum):
    UNINITIALIZED = 0
    CONTEXT_READY = 1
    DEVICE_READY = 2
    RESOURCES_ALLOCATED = 3
    PIPELINE_READY = 4
    DISPATCHED = 5
    COMPLETED = 6
    DESTROYED = 7


class ComputeJob:
    """Runs one compute dispatch from instance creation to teardown."""

    def __init__(
        self,
        config: Optional[JobConfig] = None,
        clock: Optional[RunClock] = None,
        probe: Optional[CapabilityProbe] = None,
        sinks: Optional[list] = None,
    ):
        """
        Args:
            config: run configuration; defaults to ``JobConfig()``.
            clock: run clock shared with diagnostics sinks.
            probe: capability probe used to negotiate validation.
            sinks: ``(sink, verbose)`` pairs attached when validation is
                enabled. Defaults to stderr plus the configured log file.
        """
        self.config = config or JobConfig()
        self.clock = clock or RunClock()
        self.probe = probe or CapabilityProbe()
        self._sinks = sinks

        self.phase = Phase.UNINITIALIZED
        self.arena = ResourceArena()
        self.context = DeviceContext()
        self.enabled_layers: list[str] = []
        self.diagnostics: Optional[DiagnosticsChannel] = None
        self.execution: Optional[ExecutionContext] = None
        self.resource: Optional[DeviceResource] = None
        self.binding: Optional[DescriptorBinding] = None
        self.program: Optional[ComputeProgram] = None
        self.executor: Optional[DispatchExecutor] = None
        self.token: Optional[CompletionToken] = None
        self.result: Optional[np.ndarray] = None

    # ------------------------------------------------------------------
    # Phase bookkeeping
    # ------------------------------------------------------------------
    def _require(self, phase: Phase, entering: Phase):
        if self.phase != phase:
            raise PhaseError(f"Cannot enter {entering.name} from {self.phase.name}")

    def _advance(self, phase: Phase):
        logger.debug("Phase %s -> %s", self.phase.name, phase.name)
        self.phase = phase

    @property
    def diagnostics_enabled(self) -> bool:
        return bool(self.enabled_layers)

    # ------------------------------------------------------------------
    # Forward phases
    # ------------------------------------------------------------------
    def create_context(self):
        """Negotiate validation, create the instance and attach diagnostics."""
        self._require(Phase.UNINITIALIZED, Phase.CONTEXT_READY)
        require_vulkan()
        config = self.config

        layers, extensions = [], []
        if config.diagnostics:
            layers, extensions = self.probe.negotiate(config.validation_layer, config.debug_extension)
            if not layers:
                logger.warning("Validation layer is not available!")
        self.enabled_layers = layers

        instance = self.context.create(
            make_application_info(config.application_name), layers, extensions
        )
        self.arena.push("instance", self.context.destroy_instance)

        if self.diagnostics_enabled:
            self.diagnostics = DiagnosticsChannel(instance)
            self.arena.push("diagnostics", self.diagnostics.detach_all)
            self._attach_sinks()

        self._advance(Phase.CONTEXT_READY)

    def _default_sinks(self) -> list:
        sinks = [(StreamSink(clock=self.clock), False)]
        if self.config.diagnostics_log:
            try:
                sinks.append((FileSink(self.config.diagnostics_log, clock=self.clock), True))
            except OSError as exc:
                logger.warning("Cannot open diagnostics log %s: %s", self.config.diagnostics_log, exc)
        return sinks

    def _attach_sinks(self):
        abort_flags = VK_DEBUG_REPORT_ERROR_BIT_EXT if self.config.abort_on_validation_error else 0
        sinks = self._sinks if self._sinks is not None else self._default_sinks()
        for sink, verbose in sinks:
            try:
                self.diagnostics.attach(sink, verbose=verbose, abort_flags=abort_flags)
            except Exception as exc:
                # Diagnostics are optional; the run goes on without this sink.
                logger.warning("Diagnostics sink not attached: %s", exc)
                sink.close()

    def create_device(self) -> ExecutionContext:
        """Pick a physical device and compute queue family, create the logical device."""
        self._require(Phase.CONTEXT_READY, Phase.DEVICE_READY)
        config = self.config

        devices = self.context.enumerate_physical_devices()
        logger.info("Found physical devices: %s", ", ".join(describe_devices(devices)) or "none")

        candidates = devices
        if config.device_index is not None:
            index = config.device_index
            candidates = devices[index : index + 1] if 0 <= index < len(devices) else []
        physical_device = select_physical_device(candidates, name_filter_policy(config.device_name))
        logger.info("Using device: %s", device_name(physical_device))

        queue_family_index = select_queue_family(self.context.queue_families(physical_device))
        self.execution = self.context.create_logical_device(
            physical_device, queue_family_index, self.enabled_layers
        )
        self.arena.push("device", self.context.destroy_device)

        self._advance(Phase.DEVICE_READY)
        return self.execution

    def allocate_resources(self) -> DeviceResource:
        """Create the output buffer, its memory and the descriptor set describing it."""
        self._require(Phase.DEVICE_READY, Phase.RESOURCES_ALLOCATED)
        config = self.config
        device = self.execution.device

        allocator = MemoryAllocator(device, self.execution.physical_device)
        self.resource = allocator.create_resource(config.byte_size, config.memory_flags)
        self.arena.push("buffer", partial(self.resource.destroy, device))

        self.binding = ResourceBinder(device).build(
            self.resource.buffer, config.byte_size, self.resource.size
        )
        self.arena.push("descriptors", partial(self.binding.destroy, device))

        self._advance(Phase.RESOURCES_ALLOCATED)
        return self.resource

    def build_pipeline(self, program_bytes: Optional[bytes] = None) -> ComputeProgram:
        """Build the pipeline against the descriptor layouts of this job's binding."""
        self._require(Phase.RESOURCES_ALLOCATED, Phase.PIPELINE_READY)
        config = self.config
        device = self.execution.device

        if program_bytes is None:
            source = Path(config.program_source) if config.program_source else None
            program_bytes = load_program(Path(config.program), source)
        self.program = PipelineBuilder(device).build(program_bytes, self.binding.layouts)
        self.arena.push("pipeline", partial(self.program.destroy, device))

        self._advance(Phase.PIPELINE_READY)
        return self.program

    def dispatch(self) -> CompletionToken:
        """Record and submit the dispatch; returns without waiting."""
        self._require(Phase.PIPELINE_READY, Phase.DISPATCHED)
        execution = self.execution

        self.executor = DispatchExecutor(execution.device)
        self.arena.push("commands", self.executor.destroy)
        self.token = self.executor.record_and_submit(
            self.program.pipeline,
            self.program.pipeline_layout,
            self.binding.sets,
            execution.queue_family_index,
            execution.queue,
            self.config.workgroups,
        )

        self._advance(Phase.DISPATCHED)
        return self.token

    def complete(self, consumer: Optional[Callable[[MappedView], None]] = None) -> np.ndarray:
        """Wait for the dispatch, then read the buffer back.

        ``consumer`` sees the mapped view before it is unmapped. The returned
        array is a host copy that stays valid after teardown.
        """
        self._require(Phase.DISPATCHED, Phase.COMPLETED)
        self.token.wait(self.config.wait_timeout_ns)

        mapper = ReadbackMapper(self.execution.device)
        with mapper.map(
            self.resource.memory, self.config.byte_size, np.float32, token=self.token
        ) as view:
            self.result = view.copy()
            if consumer is not None:
                consumer(view)

        self._advance(Phase.COMPLETED)
        return self.result

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------
    def destroy(self):
        """Release everything created so far, in reverse creation order."""
        if self.phase == Phase.DESTROYED:
            return
        logger.info("Destroying...")
        try:
            self.arena.teardown()
        finally:
            self._advance(Phase.DESTROYED)

    def run(self, consumer: Optional[Callable[[MappedView], None]] = None) -> np.ndarray:
        """Run every phase, then tear down. Teardown also runs on failure."""
        try:
            self.create_context()
            self.create_device()
            self.allocate_resources()
            self.build_pipeline()
            self.dispatch()
            result = self.complete(consumer)
        except Exception:
            try:
                self.destroy()
            except TeardownError as exc:
                logger.error("Teardown after failure incomplete: %s", exc)
            raise
        self.destroy()
        return result

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.destroy()
            return False
        try:
            self.destroy()
        except TeardownError as teardown_exc:
            logger.error("Teardown after failure incomplete: %s", teardown_exc)
        return False
