"""
In-memory cache tiers

VolatileCache: bounded urlPattern -> selectors map with approximate LRU
eviction at key granularity.
PrefetchQueue: staging area filled ahead of navigation, drained on the
first lookup for a pattern.

Both hold possibly-stale copies of the durable store and TTL-filter on
every read. Sweeps work on a snapshot so they never race a reader.
"""

import threading
from typing import Dict, List, Optional

from .models import SelectorEntry


def _best(entries: List[SelectorEntry]) -> Optional[SelectorEntry]:
    if not entries:
        return None
    return max(entries, key=lambda e: (e.confidence, e.last_updated))


class VolatileCache:
    """
    Bounded map of url_pattern -> ordered list of SelectorEntry.

    A key can also hold same-domain entries belonging to other pages (a
    store lookup matches by domain as well as by pattern), so one entry may
    sit under several keys. Entry-level writes and removals reach every
    copy, and test-id lookups match on the entry's own url_pattern.

    When over capacity, the key whose most recent last_used is oldest is
    evicted, until the map is back within capacity.
    """

    def __init__(self, capacity: int = 1000):
        self.capacity = capacity
        self._data: Dict[str, List[SelectorEntry]] = {}
        self._lock = threading.Lock()
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, url_pattern: str) -> bool:
        return url_pattern in self._data

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data.keys())

    def entries(self) -> List[SelectorEntry]:
        """Flat snapshot of every held entry, one per id"""
        with self._lock:
            return list(self._unique().values())

    def _unique(self) -> Dict[str, SelectorEntry]:
        # Caller holds the lock
        unique: Dict[str, SelectorEntry] = {}
        for entries in self._data.values():
            for e in entries:
                unique.setdefault(e.id, e)
        return unique

    def get(self, url_pattern: str, now: int) -> List[SelectorEntry]:
        """Non-expired entries for a pattern; the key is dropped if none remain"""
        with self._lock:
            entries = self._data.get(url_pattern)
            if entries is None:
                return []
            valid = [e for e in entries if not e.is_expired(now)]
            if not valid:
                del self._data[url_pattern]
            elif len(valid) != len(entries):
                self._data[url_pattern] = valid
            return list(valid)

    def find(self, test_id: str, url_pattern: Optional[str], now: int) -> Optional[SelectorEntry]:
        """Best non-expired entry for a test id, optionally scoped to one pattern"""
        with self._lock:
            return _best([
                e for e in self._unique().values()
                if e.test_id == test_id
                and (url_pattern is None or e.url_pattern == url_pattern)
                and not e.is_expired(now)
            ])

    def find_by_id(self, entry_id: str) -> Optional[SelectorEntry]:
        with self._lock:
            for entries in self._data.values():
                for e in entries:
                    if e.id == entry_id:
                        return e
            return None

    def put(self, url_pattern: str, entries: List[SelectorEntry]):
        """
        Replace the list held for a pattern.

        Entries already held under another key keep their in-memory
        version, which may be ahead of a store row with queued writes.
        """
        with self._lock:
            self._data.pop(url_pattern, None)
            held = self._unique()
            self._data[url_pattern] = [held.get(e.id, e) for e in entries]
            self._trim(protect=url_pattern)

    def add_entry(self, entry: SelectorEntry):
        """Replace every copy by id, or append under its own pattern (creating the key if needed)"""
        with self._lock:
            self._replace_copies(entry)
            entries = self._data.pop(entry.url_pattern, [])
            if not any(e.id == entry.id for e in entries):
                entries = entries + [entry]
            self._data[entry.url_pattern] = entries
            self._trim(protect=entry.url_pattern)

    def replace_entry(self, entry: SelectorEntry) -> bool:
        """Swap in a new version of an entry under every key holding it; False if absent"""
        with self._lock:
            return self._replace_copies(entry)

    def remove_entry(self, entry_id: str) -> bool:
        """Drop an entry from every key holding it"""
        with self._lock:
            removed = False
            for url_pattern, entries in list(self._data.items()):
                kept = [e for e in entries if e.id != entry_id]
                if len(kept) == len(entries):
                    continue
                removed = True
                if kept:
                    self._data[url_pattern] = kept
                else:
                    del self._data[url_pattern]
            return removed

    def _replace_copies(self, entry: SelectorEntry) -> bool:
        # Caller holds the lock
        found = False
        for url_pattern, entries in self._data.items():
            if any(e.id == entry.id for e in entries):
                self._data[url_pattern] = [entry if e.id == entry.id else e for e in entries]
                found = True
        return found

    def discard(self, url_pattern: str):
        with self._lock:
            self._data.pop(url_pattern, None)

    def clear(self):
        with self._lock:
            self._data.clear()

    def remove_expired(self, now: int) -> int:
        """Drop expired entries (and emptied keys); returns entries removed"""
        with self._lock:
            snapshot = dict(self._data)

        removed = 0
        swept: Dict[str, List[SelectorEntry]] = {}
        for url_pattern, entries in snapshot.items():
            valid = [e for e in entries if not e.is_expired(now)]
            removed += len(entries) - len(valid)
            swept[url_pattern] = valid

        with self._lock:
            for url_pattern, valid in swept.items():
                # Skip keys rewritten since the snapshot was taken
                if self._data.get(url_pattern) is not snapshot[url_pattern]:
                    continue
                if valid:
                    self._data[url_pattern] = valid
                else:
                    del self._data[url_pattern]
        return removed

    def _trim(self, protect: Optional[str] = None):
        # Caller holds the lock
        while len(self._data) > self.capacity:
            victims = [
                (max((e.last_used for e in entries), default=0), order, key)
                for order, (key, entries) in enumerate(self._data.items())
                if key != protect
            ]
            if not victims:
                return
            _, _, key = min(victims)
            del self._data[key]
            self.evictions += 1


class PrefetchQueue:
    """
    Selectors staged for a likely next page.

    Only the prefetch path writes here. A lookup takes the whole list for a
    pattern out in one go, so an entry is never held in both memory tiers.
    """

    def __init__(self):
        self._data: Dict[str, List[SelectorEntry]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, url_pattern: str) -> bool:
        return url_pattern in self._data

    def stage(self, url_pattern: str, entries: List[SelectorEntry]):
        if not entries:
            return
        with self._lock:
            self._data[url_pattern] = list(entries)

    def take(self, url_pattern: str, now: int) -> List[SelectorEntry]:
        """Remove a pattern and return its non-expired entries"""
        with self._lock:
            entries = self._data.pop(url_pattern, None)
        if not entries:
            return []
        return [e for e in entries if not e.is_expired(now)]

    def discard_entry(self, entry_id: str):
        with self._lock:
            for url_pattern, entries in list(self._data.items()):
                kept = [e for e in entries if e.id != entry_id]
                if len(kept) == len(entries):
                    continue
                if kept:
                    self._data[url_pattern] = kept
                else:
                    del self._data[url_pattern]

    def clear(self):
        with self._lock:
            self._data.clear()

    def remove_expired(self, now: int) -> int:
        with self._lock:
            snapshot = dict(self._data)

        removed = 0
        swept: Dict[str, List[SelectorEntry]] = {}
        for url_pattern, entries in snapshot.items():
            valid = [e for e in entries if not e.is_expired(now)]
            removed += len(entries) - len(valid)
            swept[url_pattern] = valid

        with self._lock:
            for url_pattern, valid in swept.items():
                if self._data.get(url_pattern) is not snapshot[url_pattern]:
                    continue
                if valid:
                    self._data[url_pattern] = valid
                else:
                    del self._data[url_pattern]
        return removed
