"""Accumulated stop collection across upload batches."""

from __future__ import annotations

import logging
from typing import Iterable, Iterator

from scripts.transit_desert_tools.stop_parser import Stop

LOGGER = logging.getLogger(__name__)


class StopCollection:
    """Ordered stops in upload order; duplicates across files are kept.

    Every mutation swaps in a new tuple, so ``stops`` changes identity exactly
    when the contents change. The renderer relies on that to decide whether the
    stops layer must be rebuilt.
    """

    def __init__(self, stops: Iterable[Stop] = ()) -> None:
        self._stops: tuple[Stop, ...] = tuple(stops)

    @property
    def stops(self) -> tuple[Stop, ...]:
        return self._stops

    @property
    def is_empty(self) -> bool:
        return not self._stops

    def __len__(self) -> int:
        return len(self._stops)

    def __iter__(self) -> Iterator[Stop]:
        return iter(self._stops)

    def append(self, new_stops: Iterable[Stop]) -> None:
        """Add ``new_stops`` after the existing ones, keeping both orders."""
        added = tuple(new_stops)
        if not added:
            return
        self._stops = self._stops + added
        LOGGER.info("Added %s stops (total %s).", len(added), len(self._stops))

    def clear(self) -> None:
        """Remove every stop."""
        LOGGER.info("Cleared %s stops.", len(self._stops))
        self._stops = ()
