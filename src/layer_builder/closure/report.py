"""Plain-text diagnostic artifacts written next to the layer contents."""

from pathlib import Path
from typing import Iterable, List, Optional, Set

from .extractor import extract_missing_names

DEPENDENCY_REPORT = "ldd-headless.txt"
MISSING_LOG = "ldd-missing.txt"
REFERENCE_LIST = "ldd-libs.txt"
MISSING_NAMES = "ldd-missing-names.txt"
BUILD_INFO = "build-info.txt"


def _sorted_lines(names: Iterable[str]) -> str:
    ordered = sorted(set(names))
    return "".join(f"{name}\n" for name in ordered)


class ReportWriter:
    """Creates and appends the ``ldd-*`` artifacts under one output directory."""

    def __init__(self, out_dir: Path):
        self.out_dir = Path(out_dir)

    def path(self, artifact: str) -> Path:
        return self.out_dir / artifact

    def _write(self, artifact: str, content: str) -> Path:
        target = self.path(artifact)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8") as fh:
            fh.write(content)
        return target

    def write_dependency_report(self, report_text: str) -> Path:
        return self._write(DEPENDENCY_REPORT, report_text)

    def write_not_found_lines(self, lines: Iterable[str]) -> Path:
        return self._write(MISSING_LOG, "".join(f"{line}\n" for line in lines))

    def append_warning(self, message: str) -> None:
        target = self.path(MISSING_LOG)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "a", encoding="utf-8") as fh:
            fh.write(f"{message}\n")

    def read_missing_log(self) -> List[str]:
        target = self.path(MISSING_LOG)
        if not target.is_file():
            return []
        return target.read_text(encoding="utf-8").splitlines()

    def write_reference_names(self, names: Iterable[str]) -> Path:
        return self._write(REFERENCE_LIST, _sorted_lines(names))

    def write_missing_names(self, lines: Optional[Iterable[str]] = None) -> Set[str]:
        """Derive missing names from the not-found log and persist them.

        Reads the current missing log when ``lines`` is not given.
        """
        if lines is None:
            lines = self.read_missing_log()
        names = extract_missing_names(lines)
        self._write(MISSING_NAMES, _sorted_lines(names))
        return names

    def write_build_info(self, binary: Optional[Path]) -> Path:
        return self._write(BUILD_INFO, f"HEADLESS_BIN={binary or ''}\n")
