#!/usr/bin/env python3

from __future__ import annotations

import logging
from collections.abc import Iterable

from vulngate.constants import OFFLINE_SEARCH_LIMIT
from vulngate.exceptions import DataMissingError
from vulngate.security.cache_store import CacheStore
from vulngate.security.matcher import bulletin_to_finding, normalize_component
from vulngate.security.query_builder import PlainQueryBuilder, QueryBuilder
from vulngate.security.types import Component, Finding

logger = logging.getLogger(__name__)


def deduplicate_findings(findings: Iterable[Finding]) -> list[Finding]:
    """Drop findings whose ``vulnID|componentRef`` key was already seen."""
    seen: set[str] = set()
    unique: list[Finding] = []
    for f in findings:
        if f.dedup_key not in seen:
            seen.add(f.dedup_key)
            unique.append(f)
    return unique


def resolve_offline(
    store: CacheStore,
    components: Iterable[Component],
    query_builder: QueryBuilder | None = None,
    limit: int = OFFLINE_SEARCH_LIMIT,
) -> list[Finding]:
    """Resolve components against the local bulletin cache.

    Raises DataMissingError when no collection has ever been synced, so an
    unsynced cache is never mistaken for a clean result.
    """
    builder = query_builder or PlainQueryBuilder()

    if not store.get_collection_meta():
        raise DataMissingError("offline data not synced; run an offline sync first")

    findings: list[Finding] = []
    for raw in components:
        comp = normalize_component(raw)
        query = builder.build(comp)
        if not query:
            continue
        try:
            bulletins, _total = store.search_bulletins(query, limit, 0)
        except Exception as e:
            logger.warning(f"Offline search failed for component {comp.name}: {e}")
            continue
        findings.extend(bulletin_to_finding(b, comp.ref) for b in bulletins)

    unique = deduplicate_findings(findings)
    logger.info(f"📦 Resolved {len(unique)} findings from the offline cache")
    return unique
