from __future__ import annotations

import pytest

from listing_import.models.import_options import (
    DEFAULT_BATCH_SIZE,
    MAX_BATCH_SIZE,
    MIN_BATCH_SIZE,
    ImportOptions,
    InvalidOptionsError,
)


def test_defaults_skip_duplicates():
    opts = ImportOptions()
    assert opts.skip_duplicates is True
    assert opts.update_duplicates is False
    assert opts.batch_size == DEFAULT_BATCH_SIZE == 50


def test_both_flags_rejected():
    with pytest.raises(InvalidOptionsError):
        ImportOptions(update_duplicates=True, skip_duplicates=True)


def test_update_flag_alone_clears_skip():
    opts = ImportOptions(update_duplicates=True)
    assert opts.update_duplicates is True
    assert opts.skip_duplicates is False


def test_skip_flag_explicitly_off_keeps_update_off():
    opts = ImportOptions(skip_duplicates=False)
    assert opts.skip_duplicates is False
    assert opts.update_duplicates is False


def test_neither_flag_allowed():
    opts = ImportOptions(update_duplicates=False, skip_duplicates=False)
    assert not opts.update_duplicates and not opts.skip_duplicates


@pytest.mark.parametrize("size", [MIN_BATCH_SIZE, 100, MAX_BATCH_SIZE])
def test_batch_size_bounds_inclusive(size):
    assert ImportOptions(batch_size=size).batch_size == size


@pytest.mark.parametrize("size", [MIN_BATCH_SIZE - 1, MAX_BATCH_SIZE + 1, 0, -5])
def test_batch_size_out_of_range(size):
    with pytest.raises(InvalidOptionsError, match="between 10 and 200"):
        ImportOptions(batch_size=size)


@pytest.mark.parametrize("size", [True, 50.0, "50"])
def test_batch_size_must_be_int(size):
    with pytest.raises(InvalidOptionsError):
        ImportOptions(batch_size=size)  # type: ignore[arg-type]


def test_enabling_update_clears_skip():
    opts = ImportOptions().with_update_duplicates()
    assert opts.update_duplicates and not opts.skip_duplicates
    back = opts.with_skip_duplicates()
    assert back.skip_duplicates and not back.update_duplicates


def test_with_batch_size_validates():
    assert ImportOptions().with_batch_size(20).batch_size == 20
    with pytest.raises(InvalidOptionsError):
        ImportOptions().with_batch_size(5)


def test_options_are_frozen():
    opts = ImportOptions()
    with pytest.raises(AttributeError):
        opts.batch_size = 20  # type: ignore[misc]
