"""
Provision the build container: OS packages, interpreter, site-packages
target, Playwright and its Chromium download, plus the runtime helper files
shipped inside the layer.
"""

import json
import re
import shutil
import stat
from pathlib import Path
from typing import Dict, List, Optional

import httpx
from aws_lambda_powertools import Logger

from observability.logging import SERVICE_NAME

from .closure.copier import make_tree_world_accessible
from .config import BuildConfig
from .steps import CommandRunner, PrerequisiteMissing, StepResult, StepStatus

logger = Logger(service=SERVICE_NAME)

GET_PIP_URL = "https://bootstrap.pypa.io/get-pip.py"

# Paths as seen from inside the Lambda execution environment
LAMBDA_BROWSERS_PATH = "/opt/.cache/ms-playwright"
LAMBDA_LD_LIBRARY_PATH = (
    "/opt/lib:/var/lang/lib:/lib64:/usr/lib64:/var/runtime:/var/runtime/lib"
    ":/var/task:/var/task/lib"
)

CHROMIUM_ARGS: List[str] = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-seccomp-filter-sandbox",
    "--disable-namespace-sandbox",
    "--disable-custom-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--single-process",
    "--no-zygote",
    "--no-first-run",
    "--headless=new",
    "--remote-debugging-port=0",
    "--disable-extensions",
    "--disable-background-networking",
    "--disable-features=VizDisplayCompositor,AudioServiceOutOfProcess,Translate",
    "--disk-cache-dir=/tmp/chromium-cache",
    "--user-data-dir=/tmp/chromium-user-data",
]

LAMBDA_ENV_SCRIPT = f"""#!/bin/bash
# Runtime environment for Chromium inside Lambda
export PLAYWRIGHT_BROWSERS_PATH={LAMBDA_BROWSERS_PATH}
export LD_LIBRARY_PATH={LAMBDA_LD_LIBRARY_PATH}
export FONTCONFIG_PATH=/etc/fonts
export FONTCONFIG_FILE=/etc/fonts/fonts.conf
export FONTCONFIG_SYSROOT=/opt
export PUPPETEER_SKIP_CHROMIUM_DOWNLOAD=true
export PLAYWRIGHT_SKIP_BROWSER_DOWNLOAD=true
export PLAYWRIGHT_DISABLE_SANDBOX=1
export QTWEBENGINE_DISABLE_SANDBOX=1
"""

DIAGNOSE_SCRIPT = """#!/bin/bash
echo "=== Chromium Diagnosis ==="
echo "LD_LIBRARY_PATH: $LD_LIBRARY_PATH"
echo "PLAYWRIGHT_BROWSERS_PATH: $PLAYWRIGHT_BROWSERS_PATH"

find /opt -name "chrome" -o -name "chromium" -o -name "headless_shell" 2>/dev/null | while read bin; do
  echo "Found: $bin"
  if [ -x "$bin" ]; then
    echo "  Executable: YES"
    echo "  Version attempt:"
    $bin --version 2>&1 | head -1 || echo "  Failed to get version"
  else
    echo "  Executable: NO"
    chmod +x "$bin" 2>/dev/null && echo "  Fixed permissions" || echo "  Could not fix permissions"
  fi
  echo "  LDD output:"
  ldd "$bin" 2>&1 | grep -E "not found|=>" | head -10
  echo "---"
done

echo "=== Library check ==="
find /opt/lib -name "*.so*" 2>/dev/null | wc -l | xargs echo "Total .so files in /opt/lib:"
"""

_VERSION_RE = re.compile(r"^(\d+)\.(\d+)")


class Provisioner:
    """Prepares the container and the layer's Python and browser content."""

    def __init__(self, config: BuildConfig, runner: CommandRunner):
        self.config = config
        self.runner = runner
        self.logger = logger
        self.results: List[StepResult] = []

    def _run(self, name: str, cmd, **kwargs) -> StepResult:
        result = self.runner.run(name, cmd, **kwargs)
        self.results.append(result)
        return result

    def _package_manager(self, *args: str) -> List[str]:
        return [self.config.profile.package_manager, "-y", *args]

    def install_os_packages(self) -> List[StepResult]:
        """Update and install the profile's package lists, tolerating failures."""
        profile = self.config.profile
        self.logger.info(
            f"Installing OS packages with {profile.package_manager} "
            f"for {profile.base_image}"
        )
        steps = [self._run("os-update", self._package_manager("update"))]
        for name, packages in (
            ("os-base-packages", profile.base_packages),
            ("os-chromium-packages", profile.chromium_packages),
            ("os-download-packages", profile.download_packages),
        ):
            if packages:
                steps.append(
                    self._run(name, self._package_manager("install", *packages))
                )
        return steps

    def _python_version_of(self, python: str) -> Optional[str]:
        result = self.runner.run(
            f"{Path(python).name}-version",
            [
                python,
                "-c",
                "import sys; print('%d.%d' % sys.version_info[:2])",
            ],
        )
        if not result.ok:
            return None
        match = _VERSION_RE.match(result.output.strip())
        if match is None:
            return None
        return f"{match.group(1)}.{match.group(2)}"

    def detect_python(self) -> str:
        """Return an interpreter for the configured Python version.

        Raises:
            PrerequisiteMissing: no interpreter reports the required version
        """
        wanted = self.config.python_version
        explicit = self.config.profile.python_invocation

        candidates = []
        if explicit:
            candidates.append(explicit)
        else:
            versioned = shutil.which(f"python{wanted}")
            if versioned:
                candidates.append(versioned)
            generic = shutil.which("python3")
            if generic:
                candidates.append(generic)

        for candidate in candidates:
            version = self._python_version_of(candidate)
            if version == wanted:
                self.logger.info(f"🐍 Using Python {version}: {candidate}")
                return candidate
            self.logger.info(f"Skipping {candidate}: reports Python {version}")

        raise PrerequisiteMissing(
            f"Python {wanted} is not available in this container"
        )

    def prepare_site_packages(self) -> Path:
        site_packages = self.config.site_packages
        site_packages.mkdir(parents=True, exist_ok=True)
        make_tree_world_accessible(site_packages)
        self.logger.info(f"Site-packages target: {site_packages}")
        return site_packages

    def download_get_pip(self, target: Path) -> bool:
        try:
            response = httpx.get(GET_PIP_URL, timeout=30.0, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as e:
            self.logger.warning(f"Could not download get-pip.py: {e}")
            return False
        target.write_bytes(response.content)
        return True

    def ensure_pip(self, python: str) -> StepResult:
        self._run("ensurepip", [python, "-m", "ensurepip", "--upgrade"])

        check = self._run("pip-version", [python, "-m", "pip", "--version"])
        if not check.ok:
            get_pip = Path("/tmp/get-pip.py")
            if self.download_get_pip(get_pip):
                self._run("get-pip", [python, get_pip])

        return self._run(
            "pip-upgrade",
            [python, "-m", "pip", "install", "--upgrade", "pip", "setuptools", "wheel"],
        )

    def install_wheelhouse(self, python: str) -> Optional[StepResult]:
        """Install pinned requirements from a local wheelhouse, when present."""
        requirements = self.config.requirements
        wheelhouse = self.config.wheelhouse
        if not (requirements.is_file() and wheelhouse.is_dir()):
            self.logger.info("No wheelhouse requirements to install")
            return None

        return self._run(
            "wheelhouse-install",
            [
                python, "-m", "pip", "install",
                "--no-index",
                f"--find-links={wheelhouse}",
                "--no-deps",
                f"--target={self.config.site_packages}",
                "-r", requirements,
            ],
        )

    def install_playwright(self, python: str) -> StepResult:
        return self._run(
            "playwright-package",
            [
                python, "-m", "pip", "install", "--no-deps", "--upgrade",
                "playwright", f"--target={self.config.site_packages}",
            ],
        )

    def browser_install_env(self) -> Dict[str, str]:
        return {
            "PYTHONPATH": str(self.config.site_packages),
            "PLAYWRIGHT_BROWSERS_PATH": str(self.config.browsers_path),
            # Host checks would fall back to apt-get on this image
            "PLAYWRIGHT_SKIP_VALIDATE_HOST_REQUIREMENTS": "1",
        }

    def install_browser(self, python: str) -> StepResult:
        cmd = [python, "-m", "playwright", "install"]
        if self.config.with_deps:
            cmd.append("--with-deps")
        cmd.append("chromium")
        return self._run(
            "playwright-browser",
            cmd,
            env=self.browser_install_env(),
            log_file=self.config.out_dir / "playwright-install.log",
        )

    def stage_browsers(self) -> Optional[Path]:
        """Copy downloaded browsers into the layer tree, keeping symlinks."""
        source = self.config.browsers_path
        target = self.config.staged_browsers_dir
        target.mkdir(parents=True, exist_ok=True)
        if not source.is_dir():
            self.logger.warning(f"No browsers downloaded at {source}")
            return None

        for entry in sorted(source.iterdir()):
            destination = target / entry.name
            try:
                if entry.is_dir() and not entry.is_symlink():
                    shutil.copytree(
                        entry, destination, symlinks=True, dirs_exist_ok=True
                    )
                else:
                    shutil.copy2(entry, destination, follow_symlinks=False)
            except (OSError, shutil.Error) as e:
                self.logger.warning(f"Failed to stage {entry}: {e}")
        self.logger.info(f"Browsers staged in {target}")
        return target

    def write_runtime_files(self) -> List[Path]:
        out_dir = self.config.out_dir
        (out_dir / "etc").mkdir(parents=True, exist_ok=True)
        (out_dir / "sandbox").mkdir(parents=True, exist_ok=True)

        written = []
        for name, content in (
            ("lambda_env.sh", LAMBDA_ENV_SCRIPT),
            ("diagnose_chromium.sh", DIAGNOSE_SCRIPT),
        ):
            path = out_dir / name
            path.write_text(content, encoding="utf-8")
            path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            written.append(path)

        config_path = out_dir / "chromium-config.json"
        config_path.write_text(
            json.dumps(
                {
                    "chromium_args": CHROMIUM_ARGS,
                    "environment": {
                        "ld_library_path": LAMBDA_LD_LIBRARY_PATH,
                        "playwright_browsers_path": LAMBDA_BROWSERS_PATH,
                        "fontconfig_path": "/etc/fonts",
                    },
                },
                indent=2,
            )
            + "\n",
            encoding="utf-8",
        )
        written.append(config_path)
        return written

    def run(self) -> str:
        """Provision everything up to the staged browser tree.

        Returns:
            The interpreter used for the Python steps

        Raises:
            PrerequisiteMissing: no compatible interpreter
        """
        self.install_os_packages()
        python = self.detect_python()
        self.prepare_site_packages()
        self.ensure_pip(python)
        self.install_wheelhouse(python)
        self.write_runtime_files()
        self.install_playwright(python)
        self.install_browser(python)
        self.stage_browsers()
        failed = [r.name for r in self.results if r.status is not StepStatus.SUCCESS]
        if failed:
            self.logger.warning(f"Provisioning finished with recovered failures: {failed}")
        return python
