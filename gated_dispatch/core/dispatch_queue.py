"""FIFO queue of requests waiting for the gate to open."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

from gated_dispatch.ports.http import HttpRequest

__all__ = ["DispatchQueue", "PendingEntry"]


@dataclass(eq=False)
class PendingEntry:
    """A request deferred because the gate was closed.

    Attributes:
        request: The request to send once the gate opens.
        future: Completion handle returned to the caller.
        retries_remaining: Poll ticks left before the entry times out;
            None waits for the gate indefinitely.
        enqueued_at_sec: Monotonic time the caller submitted the request.
        deferred: True once the entry had to wait in the queue.
    """

    request: HttpRequest
    future: asyncio.Future[Any]
    retries_remaining: int | None
    enqueued_at_sec: float
    deferred: bool = False
    retries: int | None = field(init=False)

    def __post_init__(self) -> None:
        self.retries = self.retries_remaining

    def decrement(self) -> None:
        """Consume one poll tick of the retry budget."""
        if self.retries_remaining is not None:
            self.retries_remaining -= 1

    @property
    def is_expired(self) -> bool:
        """True once the retry budget is used up."""
        return self.retries_remaining is not None and self.retries_remaining <= 0


class DispatchQueue:
    """Insertion-ordered collection of pending entries.

    Visiting passes must work on snapshot() and hand their removals to
    remove_all() once the pass is over, so that removing one entry never
    shifts another out of the pass.
    """

    def __init__(self) -> None:
        self._entries: list[PendingEntry] = []

    def push(self, entry: PendingEntry) -> None:
        """Append an entry at the tail."""
        entry.deferred = True
        self._entries.append(entry)

    def snapshot(self) -> list[PendingEntry]:
        """Return a copy of the entries in insertion order."""
        return list(self._entries)

    def remove_all(self, entries: Iterable[PendingEntry]) -> None:
        """Remove the given entries, keeping the order of the rest."""
        gone = {id(e) for e in entries}
        if gone:
            self._entries = [e for e in self._entries if id(e) not in gone]

    def drain(self) -> list[PendingEntry]:
        """Remove and return every entry."""
        entries, self._entries = self._entries, []
        return entries

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __iter__(self) -> Iterator[PendingEntry]:
        return iter(self.snapshot())
