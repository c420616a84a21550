"""Parse ``ldd`` reports into shared library names."""

from typing import Iterable, List, Set

# Entries provided by the dynamic loader itself; never copyable files
LOADER_PREFIXES = ("linux-vdso", "ld-linux", "ld64.so")

NOT_FOUND_MARKER = "not found"


def is_loader_entry(name: str) -> bool:
    return name.startswith(LOADER_PREFIXES)


def normalize_token(token: str) -> str:
    """Drop comma artifacts and any directory prefix from a report token."""
    return token.replace(",", "").rsplit("/", 1)[-1]


def _names_from_tokens(tokens: Iterable[str]) -> Set[str]:
    names = set()
    for token in tokens:
        if ".so" not in token:
            continue
        name = normalize_token(token)
        if name and ".so" in name and not is_loader_entry(name):
            names.add(name)
    return names


def extract_library_names(report_text: str) -> Set[str]:
    """Return the distinct library base names referenced in a report.

    Lines look like ``libnss3.so => /usr/lib64/libnss3.so (0x00007f...)`` or
    ``libfoo.so => not found``. Any whitespace-separated token containing
    ``.so`` counts, so both sides of ``=>`` contribute and collapse to one
    name. Empty or malformed input yields an empty set.
    """
    if not report_text:
        return set()
    return _names_from_tokens(report_text.split())


def not_found_lines(report_text: str) -> List[str]:
    if not report_text:
        return []
    return [line for line in report_text.splitlines() if NOT_FOUND_MARKER in line]


def extract_missing_names(lines: Iterable[str]) -> Set[str]:
    """Library names mentioned on lines carrying a not-found marker."""
    names: Set[str] = set()
    for line in lines:
        if NOT_FOUND_MARKER in line:
            names |= _names_from_tokens(line.split())
    return names
