# storage/mapping_cache.py
"""
Mapping cache: learned field mappings keyed by page signature.

File: data/mapping_cache.json  ({signature: entry})

A cached mapping is reused only while its confirmation rate is above the
trust threshold. The rate starts at 0.5 and moves with every confirmation
as an exponential moving average:

    rate = rate * (1 - alpha) + (1 if success else 0) * alpha

Entries hold structural mappings only (field key -> profile attribute),
never the candidate's personal values.

Every mutation is a read-modify-write serialized per signature, and the
commit checks that the stored version is still the one that was read. If
another writer got there first the commit raises CacheRaceError and the
update is retried from a fresh read.
The version check and the write happen under a file lock, so writers in
other processes (several server workers) cannot slip in between them.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from autofill.config import (
    CACHE_MAX_ENTRIES,
    CACHE_RACE_RETRIES,
    CACHE_TRUST_THRESHOLD,
    CONFIRMATION_ALPHA,
    INITIAL_CONFIRMATION_RATE,
    MAPPING_CACHE_FILE,
)
from autofill.errors import CacheRaceError
from .json_store import file_lock, load_json, now_iso, save_json

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    page_signature: str
    url: str = ""
    mappings: List[Dict[str, Any]] = field(default_factory=list)
    use_count: int = 0
    confirmation_rate: float = INITIAL_CONFIRMATION_RATE
    version: int = 0
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class CacheLookup:
    """Result of get_or_compute."""
    mappings: List[Dict[str, Any]]
    cached: bool
    confidence: float
    entry: Optional[CacheEntry] = None


def ema(rate: float, success: bool, alpha: float) -> float:
    """Next confirmation rate. A convex combination, clamped against float drift."""
    updated = rate * (1 - alpha) + (1.0 if success else 0.0) * alpha
    return min(1.0, max(0.0, updated))


class MappingCache:
    """JSON-file mapping cache with adaptive trust."""

    def __init__(self, path: Optional[Path] = None,
                 trust_threshold: float = CACHE_TRUST_THRESHOLD,
                 alpha: float = CONFIRMATION_ALPHA,
                 initial_rate: float = INITIAL_CONFIRMATION_RATE,
                 max_entries: int = CACHE_MAX_ENTRIES,
                 race_retries: int = CACHE_RACE_RETRIES):
        self.path = Path(path or MAPPING_CACHE_FILE)
        self.trust_threshold = trust_threshold
        self.alpha = alpha
        self.initial_rate = initial_rate
        self.max_entries = max_entries
        self.race_retries = race_retries
        self._io_lock = threading.RLock()
        self._locks: Dict[str, Tuple[threading.Lock, int]] = {}
        self._locks_guard = threading.Lock()

    # ============ Internals ============

    @contextmanager
    def _locked(self, signature: str):
        """Hold the signature's lock. Locks are dropped once nobody holds or waits for them."""
        with self._locks_guard:
            lock, users = self._locks.get(signature, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[signature] = (lock, users + 1)
        try:
            with lock:
                yield
        finally:
            with self._locks_guard:
                lock, users = self._locks[signature]
                if users <= 1:
                    del self._locks[signature]
                else:
                    self._locks[signature] = (lock, users - 1)

    def _load_all(self) -> Dict[str, Dict[str, Any]]:
        with self._io_lock:
            data = load_json(self.path, {})
        return data if isinstance(data, dict) else {}

    def _prune(self, entries: Dict[str, Dict[str, Any]]):
        """Drop the least recently updated entries beyond max_entries."""
        excess = len(entries) - self.max_entries
        if excess <= 0:
            return
        oldest = sorted(entries, key=lambda sig: entries[sig].get("updated_at", ""))[:excess]
        for signature in oldest:
            del entries[signature]
        logger.info(f"[MappingCache] Pruned {excess} old entries")

    def _commit(self, entry: CacheEntry, expected_version: Optional[int]):
        with self._io_lock, file_lock(self.path):
            entries = self._load_all()
            stored = entries.get(entry.page_signature)
            stored_version = stored.get("version") if stored else None
            if stored_version != expected_version:
                raise CacheRaceError(
                    f"{entry.page_signature} changed underneath us "
                    f"(stored version {stored_version}, read version {expected_version})"
                )
            entry.version = (expected_version or 0) + 1
            entry.updated_at = now_iso()
            entries[entry.page_signature] = entry.to_dict()
            self._prune(entries)
            save_json(self.path, entries)

    def _mutate(self, signature: str,
                change: Callable[[Optional[CacheEntry]], Optional[CacheEntry]]) -> Optional[CacheEntry]:
        """
        Read the entry, apply change, commit if the entry is unchanged on disk.

        change returns the new entry, or None to leave the store as is.
        Returns the committed entry (or the current one when nothing changed).
        """
        for attempt in range(1, self.race_retries + 1):
            current = self.get(signature)
            expected = current.version if current else None
            updated = change(current)
            if updated is None:
                return current
            try:
                self._commit(updated, expected)
                return updated
            except CacheRaceError as e:
                logger.warning(f"[MappingCache] {e} (attempt {attempt}/{self.race_retries})")
        raise CacheRaceError(f"Gave up updating {signature} after {self.race_retries} attempts")

    # ============ Public API ============

    def get(self, signature: str) -> Optional[CacheEntry]:
        raw = self._load_all().get(signature)
        return CacheEntry.from_dict(raw) if raw else None

    def is_trusted(self, entry: Optional[CacheEntry]) -> bool:
        return entry is not None and entry.confirmation_rate > self.trust_threshold

    def lookup(self, signature: str) -> Optional[CacheEntry]:
        """Return the entry if it is trusted (counting the reuse), else None."""
        with self._locked(signature):
            return self._reuse(signature)

    def _reuse(self, signature: str) -> Optional[CacheEntry]:
        def count_use(entry):
            if not self.is_trusted(entry):
                return None
            entry.use_count += 1
            return entry

        entry = self._mutate(signature, count_use)
        return entry if self.is_trusted(entry) else None

    def upsert(self, signature: str, mappings: List[Dict[str, Any]], url: str = "") -> CacheEntry:
        """Create the entry (rate starts at initial_rate) or replace its mapping."""
        with self._locked(signature):
            return self._upsert(signature, mappings, url)

    def _upsert(self, signature: str, mappings: List[Dict[str, Any]], url: str) -> CacheEntry:
        def store(entry):
            if entry is None:
                now = now_iso()
                return CacheEntry(
                    page_signature=signature,
                    url=url,
                    mappings=list(mappings),
                    use_count=1,
                    confirmation_rate=self.initial_rate,
                    created_at=now,
                    updated_at=now,
                )
            entry.mappings = list(mappings)
            entry.use_count += 1
            if url:
                entry.url = url
            return entry

        return self._mutate(signature, store)

    def get_or_compute(self, signature: str, compute_fn: Callable[[], List[Dict[str, Any]]],
                       url: str = "") -> CacheLookup:
        """
        Reuse a trusted mapping, or compute a new one and store it.

        compute_fn runs under the signature's lock, so concurrent callers
        for the same page compute once.
        """
        with self._locked(signature):
            entry = self._reuse(signature)
            if entry is not None:
                logger.info(f"[MappingCache] Using cached mapping {signature} (rate {entry.confirmation_rate:.2f})")
                return CacheLookup(entry.mappings, True, entry.confirmation_rate, entry)

            mappings = compute_fn()
            entry = self._upsert(signature, mappings, url)
            return CacheLookup(list(mappings), False, entry.confirmation_rate, entry)

    def confirm(self, signature: str, success: bool) -> Optional[float]:
        """Feed back whether the mapping worked. Returns the new rate, None for unknown signatures."""
        def update(entry):
            if entry is None:
                return None
            entry.confirmation_rate = ema(entry.confirmation_rate, success, self.alpha)
            return entry

        with self._locked(signature):
            entry = self._mutate(signature, update)
        if entry is None:
            logger.warning(f"[MappingCache] Cannot confirm unknown signature {signature}")
            return None
        logger.info(f"[MappingCache] {signature} confirmed ({'success' if success else 'failure'}) → {entry.confirmation_rate:.3f}")
        return entry.confirmation_rate

    def delete(self, signature: str) -> bool:
        with self._locked(signature), self._io_lock, file_lock(self.path):
            entries = self._load_all()
            if signature not in entries:
                return False
            del entries[signature]
            save_json(self.path, entries)
            return True

    def clear(self) -> int:
        with self._io_lock, file_lock(self.path):
            count = len(self._load_all())
            save_json(self.path, {})
        return count

    def stats(self) -> Dict[str, Any]:
        entries = [CacheEntry.from_dict(e) for e in self._load_all().values()]
        return {
            "entries": len(entries),
            "trusted": sum(1 for e in entries if self.is_trusted(e)),
            "total_uses": sum(e.use_count for e in entries),
        }
