"""
pictovoice/intent/selection.py — Ordered, capacity-bounded selection buffer.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Optional

from pictovoice.core.constants import C

logger = logging.getLogger(__name__)


class AppendResult(Enum):
    """Outcome of :meth:`SelectionBuffer.append`."""

    OK = "ok"
    ALREADY_FULL = "already_full"


class SelectionBuffer:
    """
    Committed concept keys in selection order.

    Reaching capacity fires ``on_full`` exactly once with the full ordered
    sequence; further appends are no-ops until the caller clears the buffer
    (after composition finishes, or when the user clears it).

    Args:
        on_full: Called with the ordered tuple when the buffer fills.
        capacity: Maximum length.
    """

    def __init__(
        self,
        on_full: Optional[Callable[[tuple[str, ...]], None]] = None,
        capacity: int = C.SELECTION_CAPACITY,
    ) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be ≥1, got {capacity}")
        self._items: list[str] = []
        self._capacity = capacity
        self._on_full = on_full

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"SelectionBuffer({self._items!r}, capacity={self._capacity})"

    @property
    def items(self) -> tuple[str, ...]:
        return tuple(self._items)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def is_full(self) -> bool:
        return len(self._items) >= self._capacity

    def append(self, key: str) -> AppendResult:
        """Append *key*; returns ``ALREADY_FULL`` without changing anything at capacity."""
        if self.is_full:
            logger.debug("Selection full — ignoring %r", key)
            return AppendResult.ALREADY_FULL

        self._items.append(key)
        logger.info("Selected %r (%d/%d)", key, len(self._items), self._capacity)
        if len(self._items) == self._capacity and self._on_full is not None:
            self._on_full(tuple(self._items))
        return AppendResult.OK

    def remove(self, index: int) -> str:
        """
        Remove and return the item at *index*.

        Raises:
            IndexError: If *index* is out of range.
        """
        key = self._items.pop(index)
        logger.info("Removed %r from selection", key)
        return key

    def clear(self) -> None:
        """Empty the buffer."""
        self._items.clear()
