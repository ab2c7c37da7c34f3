# mpv remote
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Status snapshots — one consistent view of player state per request.

StatusAggregator reads every requested key concurrently and waits for them
against a single deadline.  Keys that miss the deadline are filled from the
SnapshotCache (last value seen for that key) or from STATUS_DEFAULTS.  Late
reads are not cancelled: they finish in the background and refresh the
cache for the next request.

    cache = SnapshotCache()
    aggregator = StatusAggregator(mpv, cache, deadline=0.5)
    snap = await aggregator.snapshot(exclude={"playlist"})
    snap["volume"], snap.stale
"""

import asyncio
import copy
import itertools
import logging
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Iterable

from .composite import CHAPTER_LIST, METADATA, PLAYLIST, TRACK_LIST, fetch_composite, safe_get

log = logging.getLogger(__name__)

DEFAULT_DEADLINE = 0.5  # seconds

# Canonical status keys, in response order, with the value used when a key
# has never been read successfully.
STATUS_DEFAULTS = {
    "pause": False,
    "mute": False,
    "filename": None,
    "path": None,
    "duration": 0,
    "position": 0,
    "remaining": 0,
    "media-title": None,
    "chapter": 0,
    "volume": 0,
    "volume-max": 100,
    "fullscreen": False,
    "speed": 1,
    "sub-delay": 0,
    "sub-visibility": True,
    "audio-delay": 0,
    "sub-font-size": 55,
    "sub-ass-override": "no",
    "playlist": [],
    "chapter-list": [],
    "track-list": [],
    "metadata": {},
}

# Status keys whose mpv property has a different name
PROPERTY_ALIASES = {
    "position": "time-pos",
    "remaining": "time-remaining",
}

COMPOSITE_KEYS = {
    "playlist": PLAYLIST,
    "chapter-list": CHAPTER_LIST,
    "track-list": TRACK_LIST,
    "metadata": METADATA,
}


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    version: int
    updated_at: float  # time.monotonic()


class SnapshotCache:
    """Last successfully read value per status key.

    Entries are independent: each key is overwritten by its most recent read
    (last writer wins) and never rolled back.  Safe to write from any thread.
    """

    def __init__(self):
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._versions = itertools.count(1)

    def get(self, key: str, default=None):
        entry = self.entry(key)
        return entry.value if entry is not None else default

    def entry(self, key: str) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, value) -> CacheEntry:
        with self._lock:
            entry = CacheEntry(value, next(self._versions), time.monotonic())
            self._entries[key] = entry
            return entry

    def age(self, key: str) -> float | None:
        """Seconds since *key* was last refreshed, or None if never cached."""
        entry = self.entry(key)
        return time.monotonic() - entry.updated_at if entry else None

    def __contains__(self, key: str):
        with self._lock:
            return key in self._entries

    def __len__(self):
        with self._lock:
            return len(self._entries)


class Snapshot(Mapping):
    """Immutable key → value mapping returned for one status request.

    ``stale`` holds the keys whose read missed the deadline and were filled
    from the cache or the default table instead.
    """

    def __init__(self, values: dict, stale: Iterable[str] = ()):
        self._values = dict(values)
        self.stale = frozenset(stale)

    def __getitem__(self, key):
        return self._values[key]

    def __iter__(self):
        return iter(self._values)

    def __len__(self):
        return len(self._values)

    def as_dict(self) -> dict:
        return dict(self._values)

    def __repr__(self):
        return f"Snapshot({self._values!r}, stale={sorted(self.stale)!r})"


class StatusAggregator:
    """Builds Snapshots from concurrent property reads with a deadline."""

    def __init__(self, player, cache: SnapshotCache,
                 deadline: float = DEFAULT_DEADLINE, defaults: dict | None = None):
        self.player = player
        self.cache = cache
        self.deadline = deadline
        self.defaults = defaults if defaults is not None else STATUS_DEFAULTS
        self._inflight: dict[str, asyncio.Task] = {}

    @property
    def keys(self) -> list[str]:
        return list(self.defaults)

    def default(self, key: str):
        return copy.deepcopy(self.defaults.get(key))

    async def fetch(self, key: str):
        """Fresh read of one status key (None if absent)."""
        spec = COMPOSITE_KEYS.get(key)
        if spec is not None:
            return await fetch_composite(self.player, spec)
        return await safe_get(self.player, PROPERTY_ALIASES.get(key, key))

    async def _fetch_and_store(self, key: str):
        try:
            value = await self.fetch(key)
        except Exception:
            log.exception("Unexpected error reading status key %s", key)
            value = None
        if value is None:
            # Absent: answer with the default, keep the last good value cached
            return self.default(key)
        self.cache.put(key, value)
        return value

    def _start(self, key: str) -> asyncio.Task:
        """Start a read for *key*, or join the one still running from earlier."""
        task = self._inflight.get(key)
        if task is not None and not task.done():
            return task

        task = asyncio.create_task(self._fetch_and_store(key))
        self._inflight[key] = task

        def _forget(t, key=key):
            if self._inflight.get(key) is t:
                del self._inflight[key]

        task.add_done_callback(_forget)
        return task

    async def snapshot(self, exclude: Iterable[str] = (), deadline: float | None = None,
                       keys: Iterable[str] | None = None) -> Snapshot:
        """Return requested-minus-excluded keys within *deadline* seconds."""
        excluded = set(exclude)
        requested = [k for k in (keys if keys is not None else self.keys)
                     if k not in excluded]
        if not requested:
            return Snapshot({})

        tasks = {key: self._start(key) for key in requested}
        timeout = self.deadline if deadline is None else deadline
        await asyncio.wait(set(tasks.values()), timeout=timeout)

        values, stale = {}, []
        for key, task in tasks.items():
            if task.done() and not task.cancelled():
                values[key] = task.result()
                continue
            stale.append(key)
            entry = self.cache.entry(key)
            values[key] = entry.value if entry is not None else self.default(key)

        if stale:
            log.debug("Status deadline (%.0f ms) hit, stale keys: %s",
                      timeout * 1000, ", ".join(stale))
        return Snapshot(values, stale)
