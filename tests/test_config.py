"""Tests for JobConfig and its environment overrides."""

from pathlib import Path

from gpujob.backend.base import HOST_VISIBLE_COHERENT, INFINITE_TIMEOUT
from gpujob.config import JobConfig


class TestDefaults:
    def test_geometry(self):
        config = JobConfig()
        assert config.element_count == 128 * 128
        assert config.byte_size == 128 * 128 * 4
        assert config.workgroups == (4, 4, 1)
        assert config.memory_flags == HOST_VISIBLE_COHERENT

    def test_run_defaults(self):
        config = JobConfig()
        assert config.diagnostics is True
        assert config.abort_on_validation_error is False
        assert config.wait_timeout_ns == INFINITE_TIMEOUT
        assert Path(config.program).name == "mandelbrot.spv"


class TestFromEnv:
    def test_empty_environment(self):
        assert JobConfig.from_env({}) == JobConfig()

    def test_environment_values(self):
        config = JobConfig.from_env(
            {
                "GPUJOB_DEVICE_INDEX": "1",
                "GPUJOB_DEVICE_NAME": "nvidia",
                "GPUJOB_VALIDATION_LAYER": "VK_LAYER_LUNARG_standard_validation",
                "GPUJOB_WAIT_TIMEOUT_NS": "5000",
                "GPUJOB_DISABLE_DIAGNOSTICS": "true",
            }
        )
        assert config.device_index == 1
        assert config.device_name == "nvidia"
        assert config.validation_layer == "VK_LAYER_LUNARG_standard_validation"
        assert config.wait_timeout_ns == 5000
        assert config.diagnostics is False

    def test_invalid_integers_ignored(self, caplog):
        config = JobConfig.from_env({"GPUJOB_DEVICE_INDEX": "first", "GPUJOB_WAIT_TIMEOUT_NS": "soon"})
        assert config.device_index is None
        assert config.wait_timeout_ns == INFINITE_TIMEOUT
        assert "GPUJOB_DEVICE_INDEX" in caplog.text

    def test_overrides_win_and_none_is_ignored(self):
        config = JobConfig.from_env(
            {"GPUJOB_DISABLE_DIAGNOSTICS": "1"}, diagnostics=True, output=None
        )
        assert config.diagnostics is True
        assert config.output == JobConfig().output


class TestProgramSource:
    def test_bundled_pair_by_default(self):
        config = JobConfig()
        assert Path(config.program_source).name == "mandelbrot.comp"

    def test_custom_program_drops_bundled_source(self, tmp_path):
        config = JobConfig.from_env({}, program=tmp_path / "my_kernel.spv")
        assert config.program == tmp_path / "my_kernel.spv"
        assert config.program_source is None

    def test_custom_source_kept(self, tmp_path):
        config = JobConfig(program=tmp_path / "k.spv", program_source=tmp_path / "k.comp")
        assert config.program_source == tmp_path / "k.comp"
