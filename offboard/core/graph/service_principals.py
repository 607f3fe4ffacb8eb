"""Service principal lookups with a bounded TTL cache."""
from __future__ import annotations
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

from .client import GraphClient
from .exceptions import NotFoundError
from .models import ServicePrincipal

_MISSING = object()


class ServicePrincipalCache:
    """Thread-safe LRU cache with per-entry expiry.

    ``None`` is a valid cached value (the principal does not exist).
    """

    def __init__(self, ttl_seconds: int = 3600, max_entries: int = 512, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, tuple[float, Optional[ServicePrincipal]]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str):
        """Return the cached value, or the module sentinel ``_MISSING``."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return _MISSING
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return _MISSING
            self._entries.move_to_end(key)
            return value

    def put(self, key: str, value: Optional[ServicePrincipal]) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ServicePrincipalService:
    """Service for reading enterprise application metadata."""

    def __init__(self, client: GraphClient, cache: Optional[ServicePrincipalCache] = None):
        self.client = client
        self.cache = cache if cache is not None else ServicePrincipalCache()

    def get_service_principal(self, sp_id: str) -> Optional[ServicePrincipal]:
        """Look up a service principal by object id.

        Returns:
            ServicePrincipal or None if it does not exist. Failures other
            than not-found propagate and are not cached.
        """
        key = f"id:{sp_id}"
        cached = self.cache.get(key)
        if cached is not _MISSING:
            return cached
        try:
            data = self.client.get(
                f"/servicePrincipals/{sp_id}",
                params={"$select": "id,appId,displayName,appRoles"},
                operation="get_service_principal",
            )
            sp = ServicePrincipal.from_graph(data)
        except NotFoundError:
            sp = None
        self.cache.put(key, sp)
        if sp is not None:
            self.cache.put(f"app:{sp.app_id}", sp)
        return sp

    def find_service_principal_by_app_id(self, app_id: str) -> Optional[ServicePrincipal]:
        """Look up the tenant's service principal for an application (client) id."""
        key = f"app:{app_id}"
        cached = self.cache.get(key)
        if cached is not _MISSING:
            return cached
        escaped = app_id.replace("'", "''")
        data = self.client.get(
            "/servicePrincipals",
            params={"$filter": f"appId eq '{escaped}'", "$select": "id,appId,displayName,appRoles"},
            operation="find_service_principal_by_app_id",
        )
        matches = data.get("value") or []
        sp = ServicePrincipal.from_graph(matches[0]) if matches else None
        self.cache.put(key, sp)
        if sp is not None:
            self.cache.put(f"id:{sp.id}", sp)
        return sp
