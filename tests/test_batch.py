"""Tests for the batch chunker."""

import pytest

from shared.helper.HelperBatch import chunk, pause


@pytest.mark.parametrize("size", [1, 2, 3, 7, 20, 25])
def test_chunk_concatenation_restores_input(size):
    """Concatenating the groups gives back the input in order."""
    items = list(range(23))
    groups = chunk(items, size)
    assert [x for group in groups for x in group] == items


@pytest.mark.parametrize("size", [1, 4, 5, 23])
def test_chunk_only_last_group_is_short(size):
    groups = chunk(list(range(23)), size)
    assert all(len(group) == size for group in groups[:-1])
    assert 1 <= len(groups[-1]) <= size
    assert len(groups) == -(-23 // size)


def test_chunk_of_empty_input_is_empty():
    assert chunk([], 5) == []


@pytest.mark.parametrize("size", [0, -1, 2.5, True])
def test_chunk_rejects_invalid_size(size):
    with pytest.raises(ValueError):
        chunk([1, 2, 3], size)


@pytest.mark.asyncio
async def test_pause_zero_returns_immediately():
    await pause(0)
