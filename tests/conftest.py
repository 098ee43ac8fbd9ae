"""Pytest configuration: async test runner and fake collaborators.

- Provides a minimal async test runner when coroutine tests are detected.
- Exposes an in-memory intelligence client and a SQLite cache in ``tmp_path``.
"""

from __future__ import annotations

import asyncio
import inspect
from datetime import datetime
from typing import Any

import pytest

from vulngate.exceptions import UpstreamError
from vulngate.security.cache_store import SQLiteCacheStore
from vulngate.security.types import Bulletin, SearchResult


def pytest_pyfunc_call(pyfuncitem) -> bool | None:  # type: ignore[override]
    test_function = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_function):
        loop = asyncio.new_event_loop()
        try:
            # Build kwargs for the test function from available funcargs
            sig = inspect.signature(test_function)
            kwargs = {k: v for k, v in pyfuncitem.funcargs.items() if k in sig.parameters}
            loop.run_until_complete(test_function(**kwargs))
        finally:
            try:
                # Cancel lingering tasks to avoid warnings
                pending = asyncio.all_tasks(loop)
                for task in pending:
                    task.cancel()
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            except Exception:
                pass
            loop.close()
        return True
    return None


def make_bulletin(bulletin_id: str, **fields: Any) -> Bulletin:
    """Bulletin built through the same parser the real client uses."""
    doc: dict[str, Any] = {"id": bulletin_id, "title": fields.pop("title", bulletin_id)}
    if "cvss" in fields:
        doc["cvss"] = {"score": fields.pop("cvss")}
    if "cvss3" in fields:
        doc["cvss3"] = {"cvssV3": {"baseScore": fields.pop("cvss3")}}
    if "epss" in fields:
        doc["epss"] = [{"epss": fields.pop("epss")}]
    if fields.pop("wild_exploited", False):
        doc["enchantments"] = {"exploitation": {"wildExploited": True}}
    doc.update(fields)
    return Bulletin.from_dict(doc)


class FakeIntelClient:
    """In-memory IntelClient.

    ``search_results`` maps a query to a SearchResult or an exception instance;
    unknown queries return an empty result. Calls are recorded per method.
    """

    def __init__(self) -> None:
        self.search_results: dict[str, SearchResult | BaseException] = {}
        self.bulletins: dict[str, Bulletin] = {}
        self.batch_error: BaseException | None = None
        self.collections: dict[str, list[Bulletin] | BaseException] = {}
        self.updates: dict[str, list[Bulletin] | BaseException] = {}
        self.ai_scores: dict[str, float] = {}
        self.calls: dict[str, list[Any]] = {
            "search": [],
            "get_bulletin": [],
            "get_multiple_bulletins": [],
            "fetch_collection": [],
            "fetch_collection_update": [],
            "get_ai_score": [],
        }

    async def search(self, query: str, limit: int, offset: int = 0) -> SearchResult:
        self.calls["search"].append((query, limit, offset))
        result = self.search_results.get(query, SearchResult())
        if isinstance(result, BaseException):
            raise result
        return result

    async def get_bulletin(self, bulletin_id: str) -> Bulletin:
        self.calls["get_bulletin"].append(bulletin_id)
        if bulletin_id not in self.bulletins:
            raise UpstreamError(f"bulletin {bulletin_id} not found upstream")
        return self.bulletins[bulletin_id]

    async def get_multiple_bulletins(self, ids: list[str]) -> dict[str, Bulletin]:
        self.calls["get_multiple_bulletins"].append(list(ids))
        if self.batch_error is not None:
            raise self.batch_error
        return {i: self.bulletins[i] for i in ids if i in self.bulletins}

    async def fetch_collection(self, collection: str) -> list[Bulletin]:
        self.calls["fetch_collection"].append(collection)
        result = self.collections.get(collection, [])
        if isinstance(result, BaseException):
            raise result
        return list(result)

    async def fetch_collection_update(self, collection: str, after: datetime) -> list[Bulletin]:
        self.calls["fetch_collection_update"].append((collection, after))
        result = self.updates.get(collection, [])
        if isinstance(result, BaseException):
            raise result
        return list(result)

    async def get_ai_score(self, text: str) -> float | None:
        self.calls["get_ai_score"].append(text)
        return self.ai_scores.get(text)


@pytest.fixture
def fake_intel() -> FakeIntelClient:
    return FakeIntelClient()


@pytest.fixture
def bulletin_factory():
    return make_bulletin


@pytest.fixture
def sqlite_store(tmp_path):
    store = SQLiteCacheStore(tmp_path / "cache" / "vulngate.db")
    try:
        yield store
    finally:
        store.close()
