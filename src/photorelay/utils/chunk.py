"""Partition a sequence into consecutive batches of at most *size* items.

The batch scheduler transfers files in fixed-size windows so that the
Media Store's implicit rate limit is respected.  This helper produces
those windows: disjoint, in order, and concatenating back to the input.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TypeVar

T = TypeVar("T")


def chunk(items: Sequence[T], size: int) -> list[list[T]]:
    """Split *items* into consecutive batches of at most *size*.

    Parameters
    ----------
    items:
        The full ordered sequence to partition.
    size:
        Maximum number of items per batch.

    Returns
    -------
    list[list]
        ``ceil(len(items) / size)`` sublists; only the last may be shorter.
        An empty input returns an empty list (not ``[[]]``).

    Raises
    ------
    ValueError
        If *size* is less than 1.

    Examples
    --------
    >>> chunk(list(range(7)), 5)
    [[0, 1, 2, 3, 4], [5, 6]]
    """
    if size < 1:
        raise ValueError(f"size must be >= 1, got {size}")

    if not items:
        return []

    return [list(items[i : i + size]) for i in range(0, len(items), size)]
