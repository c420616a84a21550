"""Unit tests for LibraryLocator search order."""

import os

import pytest

from layer_builder.closure.locator import LibraryLocator, ResolutionKind


@pytest.fixture
def search_dirs(tmp_path):
    first = tmp_path / "usr" / "lib64"
    second = tmp_path / "lib64"
    first.mkdir(parents=True)
    second.mkdir(parents=True)
    return first, second


class TestLibraryLocator:
    """Test suite for LibraryLocator.locate."""

    def test_exact_match(self, search_dirs, make_lib):
        first, _ = search_dirs
        expected = make_lib(first, "libnss3.so")

        resolution = LibraryLocator([first]).locate("libnss3.so")

        assert resolution.kind is ResolutionKind.EXACT
        assert resolution.source == expected
        assert resolution.found

    def test_versioned_fallback(self, search_dirs, make_lib):
        first, _ = search_dirs
        expected = make_lib(first, "libbar.so.6.1.0")

        resolution = LibraryLocator([first]).locate("libbar.so.6")

        assert resolution.kind is ResolutionKind.VERSIONED
        assert resolution.source == expected

    def test_exact_beats_versioned_in_same_directory(self, search_dirs, make_lib):
        first, _ = search_dirs
        make_lib(first, "libfoo.so.1.2.3")
        expected = make_lib(first, "libfoo.so")

        resolution = LibraryLocator([first]).locate("libfoo.so")

        assert resolution.kind is ResolutionKind.EXACT
        assert resolution.source == expected

    def test_earlier_exact_beats_later_versioned(self, search_dirs, make_lib):
        first, second = search_dirs
        expected = make_lib(first, "libfoo.so")
        make_lib(second, "libfoo.so.2")

        resolution = LibraryLocator([first, second]).locate("libfoo.so")

        assert resolution.source == expected

    def test_earlier_versioned_beats_later_exact(self, search_dirs, make_lib):
        first, second = search_dirs
        expected = make_lib(first, "libfoo.so.2")
        make_lib(second, "libfoo.so")

        resolution = LibraryLocator([first, second]).locate("libfoo.so")

        assert resolution.kind is ResolutionKind.VERSIONED
        assert resolution.source == expected

    def test_directory_order_for_exact_matches(self, search_dirs, make_lib):
        first, second = search_dirs
        make_lib(first, "libfoo.so", "first")
        make_lib(second, "libfoo.so", "second")

        resolution = LibraryLocator([second, first]).locate("libfoo.so")

        assert resolution.source.read_text() == "second"

    def test_versioned_candidates_in_name_order(self, search_dirs, make_lib):
        first, _ = search_dirs
        make_lib(first, "libfoo.so.2.0")
        make_lib(first, "libfoo.so.10")

        resolution = LibraryLocator([first]).locate("libfoo.so")

        assert resolution.source.name == "libfoo.so.10"

    def test_missing(self, search_dirs):
        first, second = search_dirs

        resolution = LibraryLocator([first, second]).locate("libfoo.so")

        assert resolution.kind is ResolutionKind.MISSING
        assert resolution.source is None
        assert not resolution.found

    def test_nonexistent_directories_are_skipped(self, tmp_path, search_dirs, make_lib):
        first, _ = search_dirs
        expected = make_lib(first, "libnss3.so")

        locator = LibraryLocator([tmp_path / "does-not-exist", first])

        assert locator.locate("libnss3.so").source == expected

    def test_directory_named_like_library_is_ignored(self, search_dirs, make_lib):
        first, _ = search_dirs
        (first / "libfoo.so.0").mkdir()
        (first / "libfoo.so").mkdir()
        expected = make_lib(first, "libfoo.so.1")

        resolution = LibraryLocator([first]).locate("libfoo.so")

        assert resolution.source == expected

    def test_symlink_counts_as_exact_file(self, search_dirs, make_lib):
        first, _ = search_dirs
        real = make_lib(first, "libfoo.so.1.0")
        os.symlink(real.name, first / "libfoo.so.1")

        resolution = LibraryLocator([first]).locate("libfoo.so.1")

        assert resolution.kind is ResolutionKind.EXACT
        assert resolution.source == first / "libfoo.so.1"

    def test_with_extra_directories(self, search_dirs, make_lib):
        first, second = search_dirs
        make_lib(second, "libextra.so")

        base = LibraryLocator([first])
        extended = base.with_extra_directories([second, first])

        assert base.locate("libextra.so").kind is ResolutionKind.MISSING
        assert extended.search_path == [first, second]
        assert extended.locate("libextra.so").found
