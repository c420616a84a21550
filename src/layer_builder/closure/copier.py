"""Copy a binary's shared library closure into a self-contained directory."""

import os
import shutil
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set

import logfire
from aws_lambda_powertools import Logger

from observability import metrics
from observability.logging import SERVICE_NAME

from .extractor import extract_library_names, is_loader_entry, not_found_lines
from .locator import LibraryLocator, Resolution
from .report import ReportWriter

logger = Logger(service=SERVICE_NAME)

# a+rwX: everyone reads and writes, execute where it is a directory or
# already executable by someone
WORLD_RW = (
    stat.S_IRUSR | stat.S_IWUSR | stat.S_IRGRP | stat.S_IWGRP
    | stat.S_IROTH | stat.S_IWOTH
)
WORLD_X = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


def make_world_accessible(path: Path) -> None:
    """Apply ``chmod a+rwX`` semantics to a single file or directory."""
    mode = os.stat(path).st_mode
    new_mode = stat.S_IMODE(mode) | WORLD_RW
    if stat.S_ISDIR(mode) or mode & WORLD_X:
        new_mode |= WORLD_X
    os.chmod(path, new_mode)


def make_tree_world_accessible(root: Path) -> None:
    """``chmod -R a+rwX`` that skips symlinks and unreadable entries."""
    root = Path(root)
    if not root.exists():
        return
    make_world_accessible(root)
    for dirpath, dirnames, filenames in os.walk(root):
        for entry in dirnames + filenames:
            path = Path(dirpath) / entry
            if path.is_symlink():
                continue
            try:
                make_world_accessible(path)
            except OSError as e:
                logger.warning(f"Could not relax permissions on {path}: {e}")


@dataclass
class ClosureResult:
    """What the closure pass produced."""

    references: Set[str] = field(default_factory=set)
    copied: Dict[str, Path] = field(default_factory=dict)
    missing: Set[str] = field(default_factory=set)
    recovered: Set[str] = field(default_factory=set)
    materialized: List[Path] = field(default_factory=list)
    copy_failures: Dict[str, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.missing and not self.copy_failures


class ClosureCopier:
    """Resolve library references and copy them into ``lib_dir``.

    The destination only ever grows during a run; existing files with the
    same name are overwritten, nothing is removed.
    """

    def __init__(
        self,
        locator: LibraryLocator,
        lib_dir: Path,
        reports: ReportWriter,
        fallback_search_path: Sequence[os.PathLike] = (),
    ):
        self.locator = locator
        self.lib_dir = Path(lib_dir)
        self.reports = reports
        self.fallback_search_path = [Path(p) for p in fallback_search_path]
        self.result = ClosureResult()

    def prepare(self) -> None:
        self.lib_dir.mkdir(parents=True, exist_ok=True)
        make_world_accessible(self.lib_dir)

    def copy_resolution(self, resolution: Resolution) -> Optional[Path]:
        """Copy a found library; returns the destination or None on failure."""
        destination = self.lib_dir / resolution.source.name
        if resolution.source.parent.resolve() == self.lib_dir.resolve():
            # Resolved from the destination itself; already in place
            self.result.copied[resolution.name] = destination
            return destination
        try:
            if destination.is_symlink():
                destination.unlink()
            shutil.copy2(resolution.source, destination)
            make_world_accessible(destination)
        except OSError as e:
            logger.warning(f"Failed to copy {resolution.source}: {e}")
            self.result.copy_failures[resolution.name] = str(e)
            return None

        self.result.copy_failures.pop(resolution.name, None)
        self.result.copied[resolution.name] = destination
        metrics.libraries_copied.add(1)
        logger.info(f"Copied {resolution.source} -> {destination}")
        return destination

    def copy_references(self, names: Iterable[str]) -> None:
        for name in sorted(names):
            if is_loader_entry(name):
                continue
            resolution = self.locator.locate(name)
            if resolution.found:
                self.copy_resolution(resolution)
            else:
                self.result.missing.add(name)
                metrics.libraries_missing.add(1)
                logger.warning(f"{name} not found in search path")
                self.reports.append_warning(
                    f"WARN: {name} not found in standard paths"
                )

    def reconcile_not_found(self) -> Set[str]:
        """Retry names listed in the not-found log against a wider search path.

        Returns the missing names recorded in ``ldd-missing-names.txt``.
        """
        missing_names = self.reports.write_missing_names()
        pending = sorted(
            name for name in missing_names
            if name not in self.result.copied and not is_loader_entry(name)
        )
        if not pending:
            return missing_names

        locator = self.locator.with_extra_directories(self.fallback_search_path)
        for name in pending:
            resolution = locator.locate(name)
            if resolution.found and self.copy_resolution(resolution) is not None:
                self.result.missing.discard(name)
                self.result.recovered.add(name)
                logger.info(f"Recovered previously missing library {name}")
            else:
                self.result.missing.add(name)
                # Second WARN line for this name is intentional
                self.reports.append_warning(
                    f"WARN: {name} not found in standard paths"
                )
        return missing_names

    def materialize_symlinks(self) -> List[Path]:
        """Copy the real file behind every symlink in ``lib_dir``."""
        materialized = []
        for entry in sorted(self.lib_dir.iterdir()):
            if not entry.is_symlink():
                continue

            real = Path(os.path.realpath(entry))
            if not real.is_file():
                logger.warning(f"Dangling library symlink {entry} -> {real}")
                continue

            destination = self.lib_dir / real.name
            if not destination.is_symlink() and destination.resolve() == real:
                # Link already points at a regular file inside lib_dir
                continue
            try:
                if destination.is_symlink():
                    destination.unlink()
                shutil.copy2(real, destination)
                make_world_accessible(destination)
            except OSError as e:
                logger.warning(f"Failed to materialize {entry} -> {real}: {e}")
                continue

            materialized.append(destination)
            metrics.symlinks_materialized.add(1)
            logger.info(f"Materialized {entry.name} -> {destination}")

        self.result.materialized.extend(materialized)
        return materialized

    def run(self, report_text: str) -> ClosureResult:
        """Full closure pass over one ``ldd`` report."""
        with logfire.span("closure.copy", lib_dir=str(self.lib_dir)):
            self.reports.write_dependency_report(report_text)
            self.reports.write_not_found_lines(not_found_lines(report_text))

            names = extract_library_names(report_text)
            self.result.references = set(names)
            self.reports.write_reference_names(names)
            metrics.libraries_referenced.add(len(names))
            logger.info(f"{len(names)} libraries referenced")

            self.prepare()
            self.copy_references(names)
            self.reconcile_not_found()
            self.materialize_symlinks()

        logger.info(
            f"Closure done: {len(self.result.copied)} copied, "
            f"{len(self.result.missing)} missing, "
            f"{len(self.result.materialized)} symlinks materialized"
        )
        return self.result
