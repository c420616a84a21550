"""Shared library closure: extract, locate, copy and report."""

from .copier import ClosureCopier, ClosureResult
from .extractor import (
    extract_library_names,
    extract_missing_names,
    is_loader_entry,
    not_found_lines,
)
from .locator import LibraryLocator, Resolution, ResolutionKind
from .report import ReportWriter

__all__ = [
    "ClosureCopier",
    "ClosureResult",
    "LibraryLocator",
    "ReportWriter",
    "Resolution",
    "ResolutionKind",
    "extract_library_names",
    "extract_missing_names",
    "is_loader_entry",
    "not_found_lines",
]
