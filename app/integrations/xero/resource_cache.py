"""
Resource Cache
Per-session store of loaded Xero resource payloads.

Each key holds a loaded payload, an error marker, or nothing (not loaded).
Entries are replaced whole on every load attempt and the whole cache is
dropped when the selected tenant changes.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional

logger = logging.getLogger(__name__)


class CacheEntryStatus(str, Enum):
    LOADED = "loaded"
    ERROR = "error"


@dataclass
class CacheEntry:
    """One cached load attempt for a resource key."""
    status: CacheEntryStatus
    tenant_id: str
    payload: Any = None
    error: Optional[str] = None
    is_demo: bool = False
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_error(self) -> bool:
        return self.status == CacheEntryStatus.ERROR

    @property
    def has_data(self) -> bool:
        """Loaded and non-empty."""
        if self.is_error or self.payload is None:
            return False
        if isinstance(self.payload, (list, dict, str)) and len(self.payload) == 0:
            return False
        return True


class ResourceCache:
    """
    Mapping of resource key -> CacheEntry for a single tenant.

    Writes for a tenant other than the one the cache belongs to are
    refused, so late results from a previous tenant never land here.
    """

    def __init__(self):
        self._entries: dict[str, CacheEntry] = {}
        self.tenant_id: Optional[str] = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def keys(self) -> list[str]:
        return list(self._entries.keys())

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for key, or None if not yet loaded."""
        return self._entries.get(key)

    def bind(self, tenant_id: Optional[str]) -> None:
        """
        Attach the cache to a tenant, clearing it if the tenant differs.

        Args:
            tenant_id: Newly selected tenant (None when unselected)
        """
        if tenant_id != self.tenant_id:
            if self._entries:
                logger.info(
                    "Clearing %d cached resources (tenant %s -> %s)",
                    len(self._entries),
                    self.tenant_id,
                    tenant_id,
                )
            self._entries.clear()
            self.tenant_id = tenant_id

    def _accepts(self, key: str, tenant_id: str) -> bool:
        if tenant_id != self.tenant_id:
            logger.info(
                "Discarding late result for %s (issued for tenant %s, current %s)",
                key,
                tenant_id,
                self.tenant_id,
            )
            return False
        return True

    def store_payload(
        self,
        key: str,
        payload: Any,
        tenant_id: str,
        is_demo: bool = False,
    ) -> Optional[CacheEntry]:
        """
        Overwrite key with a loaded payload.

        Returns:
            The stored entry, or None if the tenant no longer matches
        """
        if not self._accepts(key, tenant_id):
            return None
        entry = CacheEntry(
            status=CacheEntryStatus.LOADED,
            tenant_id=tenant_id,
            payload=payload,
            is_demo=is_demo,
        )
        self._entries[key] = entry
        return entry

    def store_error(self, key: str, message: str, tenant_id: str) -> Optional[CacheEntry]:
        """
        Overwrite key with an error marker.

        Returns:
            The stored entry, or None if the tenant no longer matches
        """
        if not self._accepts(key, tenant_id):
            return None
        entry = CacheEntry(
            status=CacheEntryStatus.ERROR,
            tenant_id=tenant_id,
            error=message,
        )
        self._entries[key] = entry
        return entry

    def has_complete_data(self, keys: Iterable[str]) -> bool:
        """True if every key holds a non-empty, non-error payload."""
        for key in keys:
            entry = self._entries.get(key)
            if entry is None or not entry.has_data:
                return False
        return True

    def clear(self) -> None:
        self._entries.clear()

    def snapshot(self) -> dict[str, CacheEntry]:
        return dict(self._entries)
