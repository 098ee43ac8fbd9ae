#!/usr/bin/env python3
"""
Online resolution of inventoried components to vulnerability findings.

Each component is turned into a query by a pluggable `QueryBuilder`, looked up
through an `IntelClient`, and every returned bulletin becomes a `Finding`
attributed to ``name@version``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace

from tqdm import tqdm

from vulngate.constants import DEFAULT_MATCH_CONCURRENCY, SEARCH_PAGE_SIZE
from vulngate.exceptions import AllLookupsFailedError
from vulngate.security.intel_client import IntelClient
from vulngate.security.query_builder import LuceneQueryBuilder, QueryBuilder
from vulngate.security.types import Bulletin, Component, Finding, score_severity

logger = logging.getLogger(__name__)


def normalize_component(component: Component) -> Component:
    """Lower-case and trim the fields used for matching."""
    return replace(
        component,
        name=component.name.strip().lower(),
        version=component.version.strip(),
        type=component.type.strip().lower(),
    )


def bulletin_to_finding(bulletin: Bulletin, component_ref: str) -> Finding:
    """Convert a bulletin into a finding for ``component_ref``.

    CVSS v3 takes precedence over the legacy score; without any score the
    severity stays "unknown".
    """
    severity = "unknown"
    cvss = 0.0
    if bulletin.cvss3 is not None:
        cvss = bulletin.cvss3
        severity = score_severity(cvss)
    elif bulletin.cvss is not None:
        cvss = bulletin.cvss
        severity = score_severity(cvss)

    finding = Finding(
        vuln_id=bulletin.id,
        component_ref=component_ref,
        aliases=list(bulletin.cvelist),
        severity=severity,
        cvss=cvss,
        has_exploit=bulletin.type == "exploit",
        wild_exploited=bulletin.wild_exploited,
    )
    if bulletin.references:
        finding.references = list(bulletin.references)
    elif bulletin.href:
        finding.references = [bulletin.href]
    if bulletin.epss and bulletin.epss[0] > 0:
        finding.epss = bulletin.epss[0]
    if bulletin.ai_score is not None:
        finding.ai_score = bulletin.ai_score
    return finding


def sort_findings(findings: Iterable[Finding]) -> list[Finding]:
    """Stable order: severity descending, then identifier, then component."""
    return sorted(findings, key=lambda f: (-f.severity_level, f.vuln_id, f.component_ref))


def sort_by_risk(findings: Iterable[Finding]) -> list[Finding]:
    """Severity descending, then CVSS descending, then identifier."""
    return sorted(findings, key=lambda f: (-f.severity_level, -f.cvss, f.vuln_id))


def top_n_findings(findings: Iterable[Finding], n: int) -> list[Finding]:
    return sort_by_risk(findings)[: max(n, 0)]


@dataclass
class _MatchStats:
    attempted: int = 0
    skipped: int = 0


class Matcher:
    """Resolves components to findings against a remote intelligence source."""

    def __init__(
        self,
        intel: IntelClient,
        query_builder: QueryBuilder | None = None,
        page_size: int = SEARCH_PAGE_SIZE,
        concurrency: int = DEFAULT_MATCH_CONCURRENCY,
        show_progress: bool = False,
    ) -> None:
        self.intel = intel
        self.query_builder: QueryBuilder = query_builder or LuceneQueryBuilder()
        self.page_size = page_size
        self.concurrency = max(1, concurrency)
        self.show_progress = show_progress

    async def match(
        self, components: Iterable[Component], stop_event: asyncio.Event | None = None
    ) -> list[Finding]:
        """Return findings for ``components``.

        Lookup failures for single components are logged and skipped. Raises
        AllLookupsFailedError when every attempted lookup failed, and lets
        ``asyncio.CancelledError`` through untouched. Setting ``stop_event``
        aborts before the next query with ``asyncio.CancelledError``.

        With ``concurrency > 1`` the result is re-sorted with `sort_findings`;
        otherwise it follows component order.
        """
        # Internal stop flag; the caller's event is only ever read
        stop = asyncio.Event()

        def stopped() -> bool:
            return stop.is_set() or (stop_event is not None and stop_event.is_set())

        prepared: list[tuple[Component, str]] = []
        for raw in components:
            comp = normalize_component(raw)
            if not comp.name or not comp.version:
                continue
            query = self.query_builder.build(comp)
            if query:
                prepared.append((comp, query))

        stats = _MatchStats()
        results: list[list[Finding]] = [[] for _ in prepared]

        with tqdm(
            desc="Matching components",
            total=len(prepared),
            unit=" components",
            disable=not self.show_progress,
        ) as pbar:

            async def resolve(idx: int, comp: Component, query: str) -> None:
                if stopped():
                    raise asyncio.CancelledError("match stopped")
                stats.attempted += 1
                logger.debug(f"Querying intel for {comp.ref}")
                try:
                    result = await self.intel.search(query, self.page_size, 0)
                except asyncio.CancelledError:
                    stop.set()
                    raise
                except Exception as e:
                    logger.warning(f"Search failed for component {comp.name}: {e}")
                    stats.skipped += 1
                    pbar.update(1)
                    return
                results[idx] = [bulletin_to_finding(b, comp.ref) for b in result.bulletins]
                pbar.update(1)

            if self.concurrency == 1:
                for idx, (comp, query) in enumerate(prepared):
                    await resolve(idx, comp, query)
            else:
                semaphore = asyncio.Semaphore(self.concurrency)

                async def bounded(idx: int, comp: Component, query: str) -> None:
                    async with semaphore:
                        await resolve(idx, comp, query)

                tasks = [
                    asyncio.create_task(bounded(i, comp, query))
                    for i, (comp, query) in enumerate(prepared)
                ]
                try:
                    await asyncio.gather(*tasks)
                except BaseException:
                    stop.set()
                    for task in tasks:
                        task.cancel()
                    raise

        if stats.skipped:
            logger.warning(
                f"⚠️  {stats.skipped} of {stats.attempted} components skipped due to search errors"
            )
        if stats.attempted and stats.skipped == stats.attempted:
            raise AllLookupsFailedError(stats.attempted)

        findings = [f for chunk in results for f in chunk]
        if self.concurrency > 1:
            findings = sort_findings(findings)
        logger.info(f"📊 Resolved {len(findings)} findings from {stats.attempted} components")
        return findings
