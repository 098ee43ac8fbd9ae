#!/usr/bin/env python3
"""
End-to-end resolution: components → findings → policy verdict.

Process exit handling stays with the caller; `Verdict.exit_code` is only the
decision.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from vulngate.constants import HIGH_EPSS_THRESHOLD
from vulngate.exceptions import ConfigurationError
from vulngate.security.cache_store import CacheStore, open_cache_store
from vulngate.security.enricher import Enricher
from vulngate.security.intel_client import IntelClient, VulnersClient
from vulngate.security.matcher import Matcher, sort_findings
from vulngate.security.offline import resolve_offline
from vulngate.security.policy import Policy
from vulngate.security.types import Component, ExitCode, Finding
from vulngate.utils.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class ScanSummary:
    component_count: int = 0
    finding_count: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    exploited_count: int = 0
    high_epss_count: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "componentCount": self.component_count,
            "findingCount": self.finding_count,
            "critical": self.critical,
            "high": self.high,
            "medium": self.medium,
            "low": self.low,
            "exploitedCount": self.exploited_count,
            "highEpssCount": self.high_epss_count,
        }


def summarize(components: Sequence[Component], findings: Iterable[Finding]) -> ScanSummary:
    summary = ScanSummary(component_count=len(components))
    for f in findings:
        summary.finding_count += 1
        if f.severity in ("critical", "high", "medium", "low"):
            setattr(summary, f.severity, getattr(summary, f.severity) + 1)
        if f.has_exploit or f.wild_exploited:
            summary.exploited_count += 1
        if f.epss is not None and f.epss >= HIGH_EPSS_THRESHOLD:
            summary.high_epss_count += 1
    return summary


@dataclass
class Verdict:
    exit_code: ExitCode
    findings: list[Finding] = field(default_factory=list)
    summary: ScanSummary = field(default_factory=ScanSummary)

    @property
    def passed(self) -> bool:
        return self.exit_code is ExitCode.OK

    def to_dict(self) -> dict[str, Any]:
        return {
            "exitCode": int(self.exit_code),
            "passed": self.passed,
            "findings": [f.to_dict() for f in self.findings],
            "summary": self.summary.to_dict(),
        }


class ResolutionPipeline:
    """Wires the matcher or the offline cache, the optional enricher, and the policy."""

    def __init__(
        self,
        policy: Policy,
        matcher: Matcher | None = None,
        store: CacheStore | None = None,
        enricher: Enricher | None = None,
        offline: bool = False,
    ) -> None:
        self.policy = policy
        self.matcher = matcher
        self.store = store
        self.enricher = enricher
        self.offline = offline
        self._owned_client: VulnersClient | None = None
        self._owned_store: CacheStore | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        intel: IntelClient | None = None,
        version: str = "dev",
        show_progress: bool = False,
    ) -> ResolutionPipeline:
        """Build a pipeline for one invocation from loaded settings.

        Without ``intel``, a `VulnersClient` is created from ``settings.api_key``
        for online runs. The cache store is opened only for offline runs.
        Collaborators created here are released by `close()`.
        """
        policy = Policy.from_options(
            fail_on=settings.fail_on or None,
            ignore_ids=settings.ignore_ids,
            vex_path=settings.vex_path or None,
        )

        owned_client: VulnersClient | None = None
        if intel is None and settings.api_key and not settings.offline:
            owned_client = VulnersClient(settings.api_key, version=version)
            intel = owned_client

        matcher = enricher = None
        if intel is not None:
            matcher = Matcher(
                intel, concurrency=settings.match_concurrency, show_progress=show_progress
            )
            enricher = Enricher(intel, enable_ai_score=settings.enable_ai_score)

        store = open_cache_store(settings.db_path) if settings.offline else None

        pipeline = cls(
            policy, matcher=matcher, store=store, enricher=enricher, offline=settings.offline
        )
        pipeline._owned_client = owned_client
        pipeline._owned_store = store
        return pipeline

    async def __aenter__(self) -> ResolutionPipeline:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owned_store is not None:
            self._owned_store.close()
            self._owned_store = None
        if self._owned_client is not None:
            await self._owned_client.close()
            self._owned_client = None

    async def resolve(
        self,
        components: Sequence[Component],
        offline: bool = False,
        stop_event: asyncio.Event | None = None,
    ) -> list[Finding]:
        if offline:
            if self.store is None:
                raise ConfigurationError("offline resolution requires a cache store")
            return resolve_offline(self.store, components)
        if self.matcher is None:
            raise ConfigurationError("VULNGATE_API_KEY is required for online scanning")
        return await self.matcher.match(components, stop_event=stop_event)

    async def run(
        self,
        components: Sequence[Component],
        offline: bool | None = None,
        extra_findings: Sequence[Finding] = (),
        stop_event: asyncio.Event | None = None,
    ) -> Verdict:
        """Resolve, enrich, filter and gate.

        ``offline`` defaults to the mode the pipeline was built with.
        ``extra_findings`` are pre-existing findings (e.g. from a static analyzer);
        they are enriched when an enricher is configured, then pass through the
        policy together with the resolved ones.
        """
        if offline is None:
            offline = self.offline
        mode = "offline" if offline else "online"
        logger.info(f"🎯 Resolving {len(components)} components ({mode})")
        findings = await self.resolve(components, offline=offline, stop_event=stop_event)

        if extra_findings:
            extra = list(extra_findings)
            if self.enricher is not None and not offline:
                extra = await self.enricher.enrich(extra, stop_event=stop_event)
            findings.extend(extra)

        kept = sort_findings(self.policy.filter(findings))
        exit_code = self.policy.exit_code(kept)
        summary = summarize(components, kept)
        logger.info(
            f"📊 {summary.finding_count} findings after policy "
            f"(critical={summary.critical}, high={summary.high}); exit code {int(exit_code)}"
        )
        return Verdict(exit_code=exit_code, findings=kept, summary=summary)
