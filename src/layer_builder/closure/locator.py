"""Locate shared libraries on the filesystem by base name."""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Union

from aws_lambda_powertools import Logger

from observability.logging import SERVICE_NAME

logger = Logger(service=SERVICE_NAME)


class ResolutionKind(str, Enum):
    EXACT = "exact"
    VERSIONED = "versioned"
    MISSING = "missing"


@dataclass(frozen=True)
class Resolution:
    """Where a library reference resolved to, if anywhere."""

    name: str
    kind: ResolutionKind
    source: Optional[Path] = None

    @property
    def found(self) -> bool:
        return self.kind is not ResolutionKind.MISSING


class LibraryLocator:
    """Search an ordered list of directories for a library.

    Directories are tried fully in order. Within a directory an exact file
    name wins; otherwise the first regular file whose name starts with the
    requested name (``libfoo.so`` matches ``libfoo.so.6.0.1``) is used.
    """

    def __init__(self, search_path: Sequence[Union[str, os.PathLike]]):
        self.search_path: List[Path] = [Path(p) for p in search_path]

    def with_extra_directories(
        self, directories: Sequence[Union[str, os.PathLike]], *, prepend: bool = False
    ) -> "LibraryLocator":
        extra = [Path(p) for p in directories if Path(p) not in self.search_path]
        if prepend:
            return LibraryLocator(extra + self.search_path)
        return LibraryLocator(self.search_path + extra)

    def locate(self, name: str) -> Resolution:
        for directory in self.search_path:
            exact = directory / name
            if exact.is_file():
                return Resolution(name, ResolutionKind.EXACT, exact)

            versioned = self._first_versioned(directory, name)
            if versioned is not None:
                logger.debug(f"{name} resolved to versioned file {versioned}")
                return Resolution(name, ResolutionKind.VERSIONED, versioned)

        return Resolution(name, ResolutionKind.MISSING)

    @staticmethod
    def _first_versioned(directory: Path, name: str) -> Optional[Path]:
        try:
            entries = sorted(
                entry for entry in os.listdir(directory)
                if entry.startswith(name) and entry != name
            )
        except OSError:
            # Missing or unreadable directories are simply not searched
            return None

        for entry in entries:
            candidate = directory / entry
            if candidate.is_file():
                return candidate
        return None
