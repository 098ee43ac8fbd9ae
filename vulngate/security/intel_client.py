from __future__ import annotations

import asyncio
import io
import json
import logging
import zipfile
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Protocol

import aiohttp

from vulngate.constants import (
    BULLETIN_FIELDS,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    USER_AGENT_PRODUCT,
    VULNERS_BASE_URL,
)
from vulngate.exceptions import ConfigurationError, UpstreamError
from vulngate.security.types import Bulletin, SearchResult

logger = logging.getLogger(__name__)


class IntelClient(Protocol):
    """Remote vulnerability intelligence operations used by the core."""

    async def search(self, query: str, limit: int, offset: int = 0) -> SearchResult: ...

    async def get_bulletin(self, bulletin_id: str) -> Bulletin: ...

    async def get_multiple_bulletins(self, ids: list[str]) -> dict[str, Bulletin]: ...

    async def fetch_collection(self, collection: str) -> list[Bulletin]: ...

    async def fetch_collection_update(
        self, collection: str, after: datetime
    ) -> list[Bulletin]: ...

    async def get_ai_score(self, text: str) -> float | None: ...


def _decode_archive(body: bytes) -> list[dict[str, Any]]:
    """Collection archives come either zipped (one JSON member) or as plain JSON."""
    try:
        if zipfile.is_zipfile(io.BytesIO(body)):
            with zipfile.ZipFile(io.BytesIO(body)) as zf:
                members = [n for n in zf.namelist() if not n.endswith("/")]
                if not members:
                    return []
                with zf.open(members[0]) as fh:
                    payload: Any = json.load(fh)
        else:
            payload = json.loads(body or b"[]")
    except (zipfile.BadZipFile, ValueError) as e:
        raise UpstreamError(f"could not decode collection archive: {e}") from e

    if isinstance(payload, Mapping):
        payload = payload.get("data", payload.get("bulletins", []))
    if not isinstance(payload, list):
        raise UpstreamError("unexpected collection archive format")
    return [p for p in payload if isinstance(p, Mapping)]


class VulnersClient:
    """Async client for the Vulners API.

    ``version`` ends up in the outbound User-Agent header.
    """

    def __init__(
        self,
        api_key: str,
        version: str = "dev",
        base_url: str = VULNERS_BASE_URL,
        timeout_s: int = DEFAULT_HTTP_TIMEOUT_SECONDS,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("VULNGATE_API_KEY is required for online lookups")
        self.base_url: str = base_url.rstrip("/")
        self.headers: dict[str, str] = {
            "User-Agent": f"{USER_AGENT_PRODUCT}/{version}",
            "X-Api-Key": api_key,
        }
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> VulnersClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self.headers, timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        session = self._get_session()
        try:
            async with session.post(
                f"{self.base_url}{path}", json=payload, headers=self.headers
            ) as resp:
                resp.raise_for_status()
                body: Any = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise UpstreamError(f"POST {path} failed: {e}") from e

        if not isinstance(body, Mapping):
            raise UpstreamError(f"POST {path} returned a non-object response")
        data = body.get("data")
        if body.get("result") not in (None, "OK") or not isinstance(data, Mapping):
            error = data.get("error") if isinstance(data, Mapping) else body
            raise UpstreamError(f"POST {path} rejected: {error}")
        return dict(data)

    async def _get_bytes(self, path: str, params: dict[str, str]) -> bytes:
        session = self._get_session()
        try:
            async with session.get(
                f"{self.base_url}{path}", params=params, headers=self.headers
            ) as resp:
                resp.raise_for_status()
                return await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamError(f"GET {path} failed: {e}") from e

    async def search(self, query: str, limit: int, offset: int = 0) -> SearchResult:
        logger.debug(f"Searching vulners: query={query!r} limit={limit} offset={offset}")
        data = await self._post(
            "/api/v3/search/lucene/",
            {"query": query, "size": limit, "skip": offset, "fields": BULLETIN_FIELDS},
        )
        hits = data.get("search") or []
        bulletins = [Bulletin.from_dict(h) for h in hits if isinstance(h, Mapping)]
        return SearchResult(total=int(data.get("total") or len(bulletins)), bulletins=bulletins)

    async def get_multiple_bulletins(self, ids: list[str]) -> dict[str, Bulletin]:
        logger.debug(f"Getting {len(ids)} bulletins")
        data = await self._post("/api/v3/search/id/", {"id": ids, "fields": BULLETIN_FIELDS})
        documents = data.get("documents") or {}
        if not isinstance(documents, Mapping):
            raise UpstreamError("unexpected bulletin lookup response")
        return {
            str(key): Bulletin.from_dict(doc)
            for key, doc in documents.items()
            if isinstance(doc, Mapping)
        }

    async def get_bulletin(self, bulletin_id: str) -> Bulletin:
        logger.debug(f"Getting bulletin {bulletin_id}")
        documents = await self.get_multiple_bulletins([bulletin_id])
        if bulletin_id not in documents:
            raise UpstreamError(f"bulletin {bulletin_id} not found upstream")
        return documents[bulletin_id]

    async def fetch_collection(self, collection: str) -> list[Bulletin]:
        logger.debug(f"Fetching collection {collection}")
        body = await self._get_bytes("/api/v4/archive/collection/", {"type": collection})
        return [Bulletin.from_dict(doc) for doc in _decode_archive(body)]

    async def fetch_collection_update(self, collection: str, after: datetime) -> list[Bulletin]:
        after_utc = after.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        logger.debug(f"Fetching collection update {collection} after {after_utc}")
        body = await self._get_bytes(
            "/api/v4/archive/collection-update/", {"type": collection, "after": after_utc}
        )
        return [Bulletin.from_dict(doc) for doc in _decode_archive(body)]

    async def get_ai_score(self, text: str) -> float | None:
        logger.debug("Getting AI score")
        data = await self._post("/api/v3/ai/scoretext/", {"text": text})
        score = data.get("score")
        # Either [value, vector] or {"value": ...}
        if isinstance(score, list):
            score = score[0] if score else None
        elif isinstance(score, Mapping):
            score = score.get("value")
        if isinstance(score, (int, float)) and not isinstance(score, bool):
            return float(score)
        return None
