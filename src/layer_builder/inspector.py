"""Find the browser binary and ask ``ldd`` what it links against."""

import os
from pathlib import Path
from typing import Iterable, Optional, Sequence

from aws_lambda_powertools import Logger

from observability.logging import SERVICE_NAME

from .steps import CommandRunner, StepResult

logger = Logger(service=SERVICE_NAME)

# Preferred first; full browser builds only when no headless shell exists
HEADLESS_NAMES: Sequence[str] = ("headless_shell",)
BROWSER_NAMES: Sequence[str] = ("chrome", "chromium")


def _find_regular_file(root: Path, names: Iterable[str]) -> Optional[Path]:
    wanted = set(names)
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for filename in sorted(filenames):
            if filename not in wanted:
                continue
            candidate = Path(dirpath) / filename
            if candidate.is_file() and not candidate.is_symlink():
                return candidate
    return None


def find_headless_binary(root: Path) -> Optional[Path]:
    """Locate ``headless_shell``, falling back to ``chrome``/``chromium``."""
    root = Path(root)
    if not root.is_dir():
        logger.warning(f"Binary search root {root} does not exist")
        return None

    binary = _find_regular_file(root, HEADLESS_NAMES)
    if binary is None:
        binary = _find_regular_file(root, BROWSER_NAMES)

    if binary is not None:
        logger.info(f"🎯 Headless binary: {binary}")
    else:
        logger.error(f"No headless_shell, chrome or chromium binary under {root}")
    return binary


def request_dependency_report(binary: Path, runner: CommandRunner) -> StepResult:
    """Run ``ldd`` on the binary; the report text is the step output.

    ``ldd`` exits non-zero for some binaries while still printing a usable
    report, so the output is used regardless of status.
    """
    return runner.run("ldd", ["ldd", binary])
