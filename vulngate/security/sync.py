#!/usr/bin/env python3
"""
Offline cache refresh.

Chooses between a delta fetch (bulletins changed since the last sync) and a
full collection fetch, falls back from delta to full once, and persists the
result through the cache store.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from tqdm import tqdm

from vulngate.constants import DEFAULT_COLLECTIONS, DELTA_SYNC_THRESHOLD
from vulngate.exceptions import DataMissingError, UpstreamError
from vulngate.security.cache_store import CacheStore, validate_collection
from vulngate.security.intel_client import IntelClient
from vulngate.security.types import EPOCH, Bulletin

logger = logging.getLogger(__name__)


class SyncMode(str, Enum):
    DELTA = "delta"
    FULL = "full"


@dataclass(frozen=True)
class SyncReport:
    collection: str
    requested: SyncMode
    used: SyncMode
    fetched: int
    stored: int


def parse_collections(values: Iterable[str] | None) -> list[str]:
    """Expand comma-separated collection arguments ("cve,exploit") into names."""
    collections: list[str] = []
    for raw in values or []:
        for part in raw.split(","):
            if part.strip():
                name = validate_collection(part)
                if name not in collections:
                    collections.append(name)
    return collections or list(DEFAULT_COLLECTIONS)


def decide_sync_mode(
    force_full: bool,
    last_sync: datetime | None,
    now: datetime | None = None,
    threshold: timedelta = DELTA_SYNC_THRESHOLD,
) -> SyncMode:
    """Delta only when not forced, previously synced, and the sync is fresh enough."""
    if force_full or last_sync is None or last_sync <= EPOCH:
        return SyncMode.FULL
    now = now or datetime.now(timezone.utc)
    if now - last_sync < threshold:
        return SyncMode.DELTA
    return SyncMode.FULL


class OfflineSyncer:
    def __init__(
        self,
        intel: IntelClient,
        store: CacheStore,
        threshold: timedelta = DELTA_SYNC_THRESHOLD,
        show_progress: bool = False,
    ) -> None:
        self.intel = intel
        self.store = store
        self.threshold = threshold
        self.show_progress = show_progress

    def _last_sync(self, collection: str) -> datetime | None:
        try:
            return self.store.get_last_sync_time(collection)
        except DataMissingError:
            return None

    async def _fetch_full(self, collection: str) -> list[Bulletin]:
        try:
            return await self.intel.fetch_collection(collection)
        except UpstreamError:
            raise
        except Exception as e:
            raise UpstreamError(f"fetching collection {collection} failed: {e}") from e

    async def sync_collection(self, collection: str, full: bool = False) -> SyncReport:
        """Refresh one collection; cancellation propagates without any fallback."""
        collection = validate_collection(collection)
        last_sync = self._last_sync(collection)
        requested = decide_sync_mode(full, last_sync, threshold=self.threshold)
        used = requested

        if requested is SyncMode.DELTA and last_sync is not None:
            logger.info(f"🔄 Incremental sync of {collection} since {last_sync.isoformat()}")
            try:
                bulletins = await self.intel.fetch_collection_update(collection, last_sync)
            except Exception as e:
                logger.warning(
                    f"⚠️  Delta sync of {collection} failed, falling back to full sync: {e}"
                )
                used = SyncMode.FULL
                bulletins = await self._fetch_full(collection)
        else:
            logger.info(f"🌐 Full sync of {collection}")
            bulletins = await self._fetch_full(collection)

        logger.info(f"💾 Storing {len(bulletins)} bulletins for {collection}")
        stored = self.store.put_bulletins(collection, bulletins)
        return SyncReport(
            collection=collection,
            requested=requested,
            used=used,
            fetched=len(bulletins),
            stored=stored,
        )

    async def sync(
        self, collections: Iterable[str] | None = None, full: bool = False
    ) -> list[SyncReport]:
        names = parse_collections(collections)
        reports: list[SyncReport] = []
        with tqdm(
            desc="Syncing collections",
            total=len(names),
            unit=" collections",
            disable=not self.show_progress,
        ) as pbar:
            for name in names:
                reports.append(await self.sync_collection(name, full=full))
                pbar.update(1)
        logger.info("✅ Sync complete")
        return reports
