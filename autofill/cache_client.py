"""
HTTP client for a mapping cache served by main.py.

Same get_or_compute / confirm contract as storage.mapping_cache.MappingCache,
so the orchestrator can use either. When the server is unreachable the
mapping is computed locally and simply not cached.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

import requests

from storage.mapping_cache import CacheEntry, CacheLookup

from .config import CACHE_SERVER_URL, CACHE_TIMEOUT

logger = logging.getLogger(__name__)


class RemoteMappingCache:
    """Mapping cache living on the autofill server."""

    def __init__(self, base_url: Optional[str] = None, timeout: float = CACHE_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.base_url = (base_url or CACHE_SERVER_URL).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/v1/mapping{path}"

    def _request(self, method: str, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        resp = self.session.request(method, self._url(path), json=payload, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def lookup(self, signature: str) -> Optional[CacheEntry]:
        data = self._request("POST", "/cache/lookup", {"page_signature": signature})
        if not data.get("trusted") or not data.get("entry"):
            return None
        return CacheEntry.from_dict(data["entry"])

    def get_or_compute(self, signature: str, compute_fn: Callable[[], List[Dict[str, Any]]],
                       url: str = "") -> CacheLookup:
        try:
            entry = self.lookup(signature)
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"[RemoteCache] Lookup failed, computing without cache: {e}")
            return CacheLookup(compute_fn(), False, 0.0)

        if entry is not None:
            return CacheLookup(entry.mappings, True, entry.confirmation_rate, entry)

        mappings = compute_fn()
        try:
            data = self._request("PUT", f"/cache/{signature}", {"url": url, "mappings": mappings})
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"[RemoteCache] Could not store mapping {signature}: {e}")
            return CacheLookup(mappings, False, 0.0)
        stored = CacheEntry.from_dict(data["entry"]) if data.get("entry") else None
        return CacheLookup(mappings, False, stored.confirmation_rate if stored else 0.0, stored)

    def confirm(self, signature: str, success: bool) -> Optional[float]:
        try:
            data = self._request("POST", "/confirm", {"page_signature": signature, "success": success})
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"[RemoteCache] Confirm failed for {signature}: {e}")
            return None
        return data.get("new_rate")
