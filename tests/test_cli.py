"""Tests for the build-layer command line entry point."""

from unittest.mock import patch

import pytest

from layer_builder import cli


@pytest.fixture(autouse=True)
def no_logfire():
    with patch("layer_builder.cli.setup_logfire") as setup:
        yield setup


class TestCli:
    """Test cases for cli.main."""

    def test_report_mode_builds_closure(self, tmp_path, make_lib, no_logfire):
        system_lib = tmp_path / "usr" / "lib64"
        make_lib(system_lib, "libnss3.so")
        report = tmp_path / "ldd.txt"
        report.write_text(
            "\tlibnss3.so => /usr/lib64/libnss3.so (0x0)\n\tlibfoo.so => not found\n"
        )
        out_dir = tmp_path / "out"

        exit_code = cli.main(
            [
                "--report", str(report),
                "--out", str(out_dir),
                "--search-path", str(system_lib),
            ]
        )

        assert exit_code == 0
        assert (out_dir / "lib64" / "libnss3.so").is_file()
        assert (out_dir / "ldd-missing-names.txt").read_text() == "libfoo.so\n"
        no_logfire.assert_called_once_with(
            enable_console_output=False, build_log=str(out_dir / "build.log")
        )

    def test_missing_report_file(self, tmp_path):
        exit_code = cli.main(
            ["--report", str(tmp_path / "absent.txt"), "--out", str(tmp_path / "out")]
        )

        assert exit_code == 2

    def test_skip_provision_without_binary_succeeds(self, tmp_path):
        out_dir = tmp_path / "out"

        exit_code = cli.main(["--skip-provision", "--out", str(out_dir)])

        assert exit_code == 0
        assert (out_dir / "build-info.txt").read_text() == "HEADLESS_BIN=\n"

    def test_invalid_profile_from_environment(self, tmp_path):
        with patch.dict("os.environ", {"LAYER_BUILD_PROFILE": "windows"}):
            exit_code = cli.main(["--out", str(tmp_path / "out")])

        assert exit_code == 2

    def test_options_reach_builder(self, tmp_path):
        out_dir = tmp_path / "out"
        with patch("layer_builder.cli.LayerBuilder") as builder_cls:
            builder_cls.return_value.run.return_value.exit_code = 0
            exit_code = cli.main(
                [
                    "--profile", "amazonlinux2023",
                    "--out", str(out_dir),
                    "--browsers-path", str(tmp_path / "browsers"),
                    "--with-deps",
                    "--zip", str(tmp_path / "layer.zip"),
                ]
            )

        assert exit_code == 0
        config = builder_cls.call_args.args[0]
        assert config.profile.package_manager == "dnf"
        assert config.browsers_path == tmp_path / "browsers"
        assert config.with_deps is True
        builder_cls.return_value.run.assert_called_once_with(
            provision=True, zip_path=tmp_path / "layer.zip", publish=False
        )

    def test_zero_step_timeout_disables_timeout(self, tmp_path):
        with patch("layer_builder.cli.LayerBuilder") as builder_cls:
            builder_cls.return_value.run.return_value.exit_code = 0
            exit_code = cli.main(
                ["--skip-provision", "--out", str(tmp_path / "out"), "--step-timeout", "0"]
            )

        assert exit_code == 0
        assert builder_cls.call_args.args[0].step_timeout is None

    def test_profile_choice_validated(self, tmp_path):
        with pytest.raises(SystemExit):
            cli.main(["--profile", "debian", "--out", str(tmp_path / "out")])
