"""
gpujob - run one Vulkan compute dispatch end to end.

- backend: capability negotiation, device setup, memory, descriptors,
  pipeline, dispatch, readback, diagnostics and teardown
- job: the phase machine tying the backend together
- config: run configuration with environment overrides
- utils: relative-timestamp logging and the result dump
"""

from gpujob.backend import VULKAN_AVAILABLE
from gpujob.config import JobConfig
from gpujob.job import ComputeJob, Phase

__version__ = "0.1.0"

__all__ = [
    "VULKAN_AVAILABLE",
    "ComputeJob",
    "JobConfig",
    "Phase",
]
