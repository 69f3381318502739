"""
Resource Registry: ledger of long-lived registrations needing teardown.

Timers, subscriptions, watchers and anything else a collaborator wants torn
down deterministically is registered here with its release function.

Guarantees:
  - Every handle is released at most once; a second release is a no-op
  - cleanup() releases every live handle and clears the ledger
  - cleanup() after cleanup() is a no-op, so both an explicit shutdown and
    a host "terminating" signal may call it
  - Per-kind counts feed Measurement.resources
  - auto_cleanup() ages out stale handles and caps each kind, oldest
    first; pinned handles (the engine's own tick) are never aged out
"""

import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional


@dataclass(eq=False)
class ResourceHandle:
    id: str
    kind: str
    owner: str = ""
    created_at: float = field(default_factory=time.time)
    released: bool = False
    pinned: bool = False


@dataclass
class _Entry:
    handle: ResourceHandle
    release_fn: Optional[Callable[[], None]]


@dataclass
class KindStats:
    created: int = 0
    destroyed: int = 0
    active: int = 0


class ResourceRegistry:
    """Thread-safe ledger of registrations keyed by handle id."""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger("ResourceRegistry")
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: Dict[str, _Entry] = {}
        self._ids = itertools.count(1)
        self._by_kind: Dict[str, KindStats] = {}
        self._total_created = 0
        self._total_destroyed = 0
        self._peak_active = 0
        self._cleanups = 0

    def register(
        self,
        kind: str,
        release_fn: Optional[Callable[[], None]] = None,
        owner: str = "",
        pinned: bool = False,
    ) -> ResourceHandle:
        """Record a registration and return its handle."""
        with self._lock:
            handle = ResourceHandle(
                id=f"{kind}-{next(self._ids)}",
                kind=kind,
                owner=owner,
                created_at=self._clock(),
                pinned=pinned,
            )
            self._entries[handle.id] = _Entry(handle, release_fn)

            stats = self._by_kind.setdefault(kind, KindStats())
            stats.created += 1
            stats.active += 1
            self._total_created += 1
            self._peak_active = max(self._peak_active, len(self._entries))
            return handle

    def release(self, handle: ResourceHandle) -> bool:
        """Release one handle. Returns False if it was already released."""
        with self._lock:
            entry = self._entries.pop(handle.id, None)
            if entry is None:
                return False
            self._mark_released(entry)

        self._invoke(entry)
        return True

    def cleanup(self) -> int:
        """Release every live handle exactly once and clear the ledger."""
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
            for entry in entries:
                self._mark_released(entry)
            self._cleanups += 1

        if not entries:
            if self._cleanups > 1:
                self.logger.debug("cleanup() on empty registry, nothing to release")
            return 0

        for entry in entries:
            self._invoke(entry)
        self.logger.info("Registry cleanup released %d resources", len(entries))
        return len(entries)

    def auto_cleanup(
        self,
        max_age_s: float,
        max_per_kind: Optional[int] = None,
        mass_threshold: int = 10,
        now: Optional[float] = None,
    ) -> int:
        """Release stale handles, then trim each kind to `max_per_kind`.

        A handle is stale once it has lived longer than `max_age_s`. Kinds
        still over the cap lose their oldest handles first. Pinned handles
        are exempt from both passes but still count towards the cap.
        Returns the number of handles released.
        """
        now = self._clock() if now is None else now
        with self._lock:
            evicted = [
                e for e in self._entries.values()
                if not e.handle.pinned and now - e.handle.created_at > max_age_s
            ]
            for entry in evicted:
                del self._entries[entry.handle.id]

            if max_per_kind is not None:
                by_kind: Dict[str, List[_Entry]] = {}
                for entry in self._entries.values():
                    by_kind.setdefault(entry.handle.kind, []).append(entry)
                for kind, entries in by_kind.items():
                    excess = len(entries) - max_per_kind
                    if excess <= 0:
                        continue
                    oldest = sorted(
                        (e for e in entries if not e.handle.pinned),
                        key=lambda e: e.handle.created_at,
                    )[:excess]
                    for entry in oldest:
                        del self._entries[entry.handle.id]
                    evicted.extend(oldest)

            for entry in evicted:
                self._mark_released(entry)

        for entry in evicted:
            self._invoke(entry)
        if evicted:
            self.logger.info("Auto cleanup released %d stale resources", len(evicted))
        if len(evicted) > mass_threshold:
            self.logger.warning(
                "Mass cleanup: %d resources released in one pass, check for leaking owners",
                len(evicted),
            )
        return len(evicted)

    def counts(self) -> Dict[str, int]:
        """Live handle count per kind."""
        with self._lock:
            result: Dict[str, int] = {}
            for entry in self._entries.values():
                result[entry.handle.kind] = result.get(entry.handle.kind, 0) + 1
            return result

    def handles(self, kind: Optional[str] = None) -> List[ResourceHandle]:
        with self._lock:
            return [
                e.handle for e in self._entries.values()
                if kind is None or e.handle.kind == kind
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict:
        with self._lock:
            return {
                "total_created": self._total_created,
                "total_destroyed": self._total_destroyed,
                "current_active": len(self._entries),
                "peak_active": self._peak_active,
                "by_kind": {
                    kind: {"created": s.created, "destroyed": s.destroyed, "active": s.active}
                    for kind, s in self._by_kind.items()
                },
            }

    def report(self) -> dict:
        """Live handles with their age, grouped by kind."""
        now = self._clock()
        with self._lock:
            grouped: Dict[str, list] = {}
            for entry in self._entries.values():
                h = entry.handle
                grouped.setdefault(h.kind, []).append(
                    {"id": h.id, "owner": h.owner, "age_s": now - h.created_at}
                )
            return {
                "timestamp": now,
                "stats": self.stats(),
                "resources": {k: {"count": len(v), "items": v} for k, v in grouped.items()},
            }

    def _mark_released(self, entry: _Entry) -> None:
        entry.handle.released = True
        stats = self._by_kind[entry.handle.kind]
        stats.destroyed += 1
        stats.active -= 1
        self._total_destroyed += 1

    def _invoke(self, entry: _Entry) -> None:
        if entry.release_fn is None:
            return
        try:
            entry.release_fn()
        except Exception as e:
            self.logger.error(
                "Failed to release %s (owner=%s): %s",
                entry.handle.id, entry.handle.owner or "-", e,
            )
