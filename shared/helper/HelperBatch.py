"""Batch helpers shared by the ingestion pipeline, the writer and the repair engine."""

import asyncio
from typing import Sequence, TypeVar

T = TypeVar("T")


def chunk(items: Sequence[T], size: int) -> list[list[T]]:
    """Split items into consecutive groups of at most size elements.

    Order is preserved, no item is lost or duplicated, and only the last
    group may be shorter than size. An empty input yields no groups.

    Args:
        items (Sequence[T]): The items to split.
        size (int): Maximum group size.

    Returns:
        list[list[T]]: The groups in original order.

    Raises:
        ValueError: If size is not a positive integer.
    """
    if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
        raise ValueError(f"Chunk size must be a positive integer, got {size!r}.")
    return [list(items[start:start + size]) for start in range(0, len(items), size)]


async def pause(seconds: float) -> None:
    """Sleep between batches; a zero delay does not yield."""
    if seconds > 0:
        await asyncio.sleep(seconds)
