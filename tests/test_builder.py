"""Tests for the end-to-end layer build orchestration."""

from unittest.mock import MagicMock, patch

import pytest
from conftest import FakeRunner, failed, succeeded

from layer_builder.builder import LayerBuilder
from layer_builder.config import BuildConfig
from layer_builder.steps import StepStatus


@pytest.fixture
def system_lib(tmp_path):
    path = tmp_path / "sysroot" / "usr" / "lib64"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def config(tmp_path, system_lib):
    return BuildConfig.from_env(
        {},
        workspace=tmp_path / "workspace",
        out_dir=tmp_path / "out",
        browsers_path=tmp_path / "ms-playwright",
        search_path=[system_lib],
        fallback_search_path=[tmp_path / "sysroot" / "opt" / "lib"],
    )


def stage_headless_shell(config):
    binary = (
        config.staged_browsers_dir
        / "chromium_headless_shell-1140"
        / "chrome-linux"
        / "headless_shell"
    )
    binary.parent.mkdir(parents=True)
    binary.write_text("binary")
    return binary


LDD_OUTPUT = """\
\tlinux-vdso.so.1 (0x00007ffd6b7f2000)
\tlibnss3.so => /usr/lib64/libnss3.so (0x00007f1c29e00000)
\tlibgbm.so.1 => not found
\t/lib64/ld-linux-x86-64.so.2 (0x00007f1c2a200000)
"""


class TestLayerBuilder:
    """Test cases for LayerBuilder.run."""

    def test_binary_not_found_is_soft_success(self, config):
        builder = LayerBuilder(config, runner=FakeRunner())

        outcome = builder.run(provision=False)

        assert outcome.exit_code == 0
        assert outcome.binary is None
        assert outcome.closure is None
        assert (config.out_dir / "build-info.txt").read_text() == "HEADLESS_BIN=\n"
        assert not (config.out_dir / "ldd-headless.txt").exists()

    def test_closure_built_for_staged_binary(self, config, system_lib, make_lib):
        binary = stage_headless_shell(config)
        make_lib(system_lib, "libnss3.so")
        runner = FakeRunner({"ldd": succeeded(LDD_OUTPUT)})

        outcome = LayerBuilder(config, runner=runner).run(provision=False)

        assert outcome.exit_code == 0
        assert outcome.binary == binary
        assert runner.call("ldd")["argv"] == ["ldd", str(binary)]
        assert (config.lib_dir / "libnss3.so").is_file()
        assert outcome.closure.missing == {"libgbm.so.1"}
        assert (config.out_dir / "build-info.txt").read_text() == (
            f"HEADLESS_BIN={binary}\n"
        )
        assert (config.out_dir / "ldd-libs.txt").read_text() == (
            "libgbm.so.1\nlibnss3.so\n"
        )
        assert (config.out_dir / "ldd-missing-names.txt").read_text() == "libgbm.so.1\n"

    def test_missing_python_exits_with_prerequisite_code(self, config):
        runner = FakeRunner()

        with patch("layer_builder.provision.shutil.which", return_value=None):
            outcome = LayerBuilder(config, runner=runner).run()

        assert outcome.exit_code == 2
        assert outcome.steps[-1].status is StepStatus.FATAL
        assert "os-update" in runner.names()
        assert "ldd" not in runner.names()
        assert not (config.out_dir / "build-info.txt").exists()

    def test_failed_steps_do_not_abort(self, config, system_lib, make_lib):
        stage_headless_shell(config)
        make_lib(system_lib, "libnss3.so")

        runner = FakeRunner(
            {
                "python3.12-version": succeeded("3.12\n"),
                "os-update": failed("network unreachable"),
                "playwright-browser": failed("download failed"),
                "ldd": succeeded(LDD_OUTPUT),
            }
        )

        with patch(
            "layer_builder.provision.shutil.which",
            side_effect=lambda name: "/usr/bin/python3.12" if name == "python3.12" else None,
        ):
            outcome = LayerBuilder(config, runner=runner).run()

        assert outcome.exit_code == 0
        assert set(outcome.recovered_steps) == {"os-update", "playwright-browser"}
        assert (config.lib_dir / "libnss3.so").is_file()

    def test_packaging_and_publish(self, config, tmp_path):
        publisher = MagicMock()
        publisher.package.return_value = tmp_path / "layer.zip"
        publisher.publish.return_value = "arn:aws:lambda:us-east-1:123:layer:chromium:1"
        builder = LayerBuilder(config, runner=FakeRunner(), publisher=publisher)

        outcome = builder.run(provision=False, zip_path=tmp_path / "layer.zip", publish=True)

        publisher.package.assert_called_once_with(config.out_dir, tmp_path / "layer.zip")
        publisher.publish.assert_called_once_with(tmp_path / "layer.zip")
        assert outcome.layer_version_arn.endswith(":layer:chromium:1")

    def test_output_tree_is_world_accessible(self, config):
        (config.out_dir / "python").mkdir(parents=True)
        (config.out_dir / "python" / "module.py").write_text("")
        (config.out_dir / "python" / "module.py").chmod(0o600)

        LayerBuilder(config, runner=FakeRunner()).run(provision=False)

        mode = (config.out_dir / "python" / "module.py").stat().st_mode & 0o777
        assert mode == 0o666
