"""
Compute program loading and pipeline construction.
"""

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from .base import vk
from .errors import ResourceCreationError, vk_errors

logger = logging.getLogger(__name__)

ENTRY_POINT = "main"


def default_shader_dir() -> Path:
    return Path(__file__).resolve().parent.parent / "shaders"


def _compile_program(source: Path, out_path: Path) -> bool:
    """Best-effort compile of a GLSL compute shader with glslc."""
    glslc = shutil.which("glslc")
    if glslc is None:
        logger.debug("glslc not found; cannot build %s", out_path.name)
        return False
    if not source.exists():
        return False

    try:
        out_path.parent.mkdir(parents=True, exist_ok=True)
        subprocess.run(
            [
                glslc,
                "-fshader-stage=compute",
                str(source),
                "-o",
                str(out_path),
                "--target-env=vulkan1.0",
            ],
            check=True,
            capture_output=True,
            text=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        logger.warning("Failed to compile shader %s: %s", source.name, exc)
        return False
    logger.info("Compiled missing shader %s -> %s", source.name, out_path.name)
    return True


def load_program(path, source=None) -> bytes:
    """Read a precompiled SPIR-V program.

    If ``path`` does not exist and a GLSL ``source`` is given, it is compiled
    first when glslc is on PATH.
    """
    path = Path(path)
    if not path.exists() and source is not None:
        _compile_program(Path(source), path)
    if not path.exists():
        raise ResourceCreationError(f"Compute program not found: {path}")
    return path.read_bytes()


@dataclass
class ComputeProgram:
    shader_module: Any = None
    pipeline_layout: Any = None
    pipeline: Any = None

    def destroy(self, device):
        if self.shader_module:
            vk.vkDestroyShaderModule(device, self.shader_module, None)
            self.shader_module = None
        if self.pipeline_layout:
            vk.vkDestroyPipelineLayout(device, self.pipeline_layout, None)
            self.pipeline_layout = None
        if self.pipeline:
            vk.vkDestroyPipeline(device, self.pipeline, None)
            self.pipeline = None


class PipelineBuilder:
    """Builds a single-stage compute pipeline; no cache, no derivatives."""

    def __init__(self, device):
        self.device = device

    def build(self, program_bytes: bytes, descriptor_layouts: Sequence) -> ComputeProgram:
        if not program_bytes or len(program_bytes) % 4 != 0:
            raise ResourceCreationError(
                f"SPIR-V bytecode length must be a positive multiple of 4, got {len(program_bytes or b'')}"
            )

        program = ComputeProgram()
        try:
            module_info = vk.VkShaderModuleCreateInfo(
                sType=vk.VK_STRUCTURE_TYPE_SHADER_MODULE_CREATE_INFO,
                codeSize=len(program_bytes),
                pCode=bytes(program_bytes),
            )
            with vk_errors("vkCreateShaderModule", ResourceCreationError):
                program.shader_module = vk.vkCreateShaderModule(self.device, module_info, None)

            layout_info = vk.VkPipelineLayoutCreateInfo(
                sType=vk.VK_STRUCTURE_TYPE_PIPELINE_LAYOUT_CREATE_INFO,
                setLayoutCount=len(descriptor_layouts),
                pSetLayouts=list(descriptor_layouts),
            )
            with vk_errors("vkCreatePipelineLayout", ResourceCreationError):
                program.pipeline_layout = vk.vkCreatePipelineLayout(self.device, layout_info, None)

            stage = vk.VkPipelineShaderStageCreateInfo(
                sType=vk.VK_STRUCTURE_TYPE_PIPELINE_SHADER_STAGE_CREATE_INFO,
                stage=vk.VK_SHADER_STAGE_COMPUTE_BIT,
                module=program.shader_module,
                pName=ENTRY_POINT,
            )
            pipeline_info = vk.VkComputePipelineCreateInfo(
                sType=vk.VK_STRUCTURE_TYPE_COMPUTE_PIPELINE_CREATE_INFO,
                stage=stage,
                layout=program.pipeline_layout,
            )
            with vk_errors("vkCreateComputePipelines", ResourceCreationError):
                program.pipeline = vk.vkCreateComputePipelines(
                    self.device, vk.VK_NULL_HANDLE, 1, [pipeline_info], None
                )[0]
        except Exception:
            program.destroy(self.device)
            raise

        return program

