"""Per-sender record of the numbered options offered last.

An entry lives until the sender picks a valid number, a newer list replaces
it, or ``ttl_seconds`` pass. Expiry is checked lazily on read; ``sweep`` can
be called periodically to bound memory.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from services.metrics import metrics

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 10 * 60

RESOLVED = "resolved"
MISSING = "missing"
EXPIRED = "expired"
INVALID = "invalid"


@dataclass(frozen=True)
class SelectionOption:
    number: int
    title: str
    description: str = ""
    section_id: Optional[int] = None
    item_id: str = ""
    response: str = ""


@dataclass
class PendingSelection:
    command_id: Optional[int]
    options: List[SelectionOption] = field(default_factory=list)
    created_at: float = 0.0

    def option(self, number: int) -> Optional[SelectionOption]:
        for opt in self.options:
            if opt.number == number:
                return opt
        return None

    @property
    def numbers(self) -> List[int]:
        return [opt.number for opt in self.options]


@dataclass(frozen=True)
class SelectionLookup:
    status: str
    option: Optional[SelectionOption] = None
    offered: int = 0

    @property
    def ok(self) -> bool:
        return self.status == RESOLVED


class PendingSelectionStore:
    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = 10000,
    ):
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = max(1, int(max_entries))
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: Dict[str, PendingSelection] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _expired(self, selection: PendingSelection, now: float) -> bool:
        return now - selection.created_at > self.ttl_seconds

    def _publish(self) -> None:
        metrics.gauge("pending_selections", len(self._entries))

    def register(self, sender_key: str, selection: PendingSelection) -> PendingSelection:
        """Store ``selection`` for the sender, replacing any earlier one."""
        with self._lock:
            selection.created_at = self._clock()
            replaced = self._entries.pop(sender_key, None)
            if replaced is not None:
                logger.debug("Replacing pending selection for %s (command #%s)", sender_key, replaced.command_id)
            if len(self._entries) >= self.max_entries:
                self._evict()
            self._entries[sender_key] = selection
            self._publish()
            return selection

    def _evict(self) -> None:
        self.sweep()
        # Dicts keep insertion order, so the head holds the oldest registrations.
        while len(self._entries) >= self.max_entries:
            oldest = next(iter(self._entries))
            self._entries.pop(oldest, None)
            logger.warning("Pending selection store full; evicted %s", oldest)

    def get(self, sender_key: str) -> Optional[PendingSelection]:
        """Peek at the live entry without consuming it."""
        with self._lock:
            selection = self._entries.get(sender_key)
            if selection is None:
                return None
            if self._expired(selection, self._clock()):
                self._entries.pop(sender_key, None)
                self._publish()
                return None
            return selection

    def resolve(self, sender_key: str, number: int) -> SelectionLookup:
        with self._lock:
            selection = self._entries.get(sender_key)
            if selection is None:
                return SelectionLookup(MISSING)

            if self._expired(selection, self._clock()):
                self._entries.pop(sender_key, None)
                self._publish()
                logger.info("Pending selection for %s expired", sender_key)
                return SelectionLookup(EXPIRED)

            option = selection.option(number)
            if option is None:
                # A wrong number keeps the entry so the sender can try again.
                return SelectionLookup(INVALID, offered=len(selection.options))

            self._entries.pop(sender_key, None)
            self._publish()
            return SelectionLookup(RESOLVED, option=option, offered=len(selection.options))

    def discard(self, sender_key: str) -> bool:
        with self._lock:
            removed = self._entries.pop(sender_key, None) is not None
            self._publish()
            return removed

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        with self._lock:
            now = self._clock()
            stale = [key for key, sel in self._entries.items() if self._expired(sel, now)]
            for key in stale:
                self._entries.pop(key, None)
            self._publish()
        if stale:
            logger.debug("Swept %s expired pending selections", len(stale))
        return len(stale)
