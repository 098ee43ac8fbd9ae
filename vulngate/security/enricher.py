from __future__ import annotations

import asyncio
import logging

from vulngate.constants import KNOWN_ID_PREFIXES
from vulngate.security.intel_client import IntelClient
from vulngate.security.matcher import bulletin_to_finding
from vulngate.security.types import Bulletin, Finding

logger = logging.getLogger(__name__)


def merge_aliases(existing: list[str], incoming: list[str]) -> list[str]:
    """Union preserving first-seen order."""
    merged: list[str] = []
    seen: set[str] = set()
    for alias in [*existing, *incoming]:
        if alias not in seen:
            seen.add(alias)
            merged.append(alias)
    return merged


def enrich_finding(finding: Finding, bulletin: Bulletin) -> None:
    """Merge bulletin metadata into ``finding`` without downgrading anything.

    The score is only filled when the finding has none and the severity only
    when it is "unknown"; exploit flags are OR-ed; EPSS and AI score are only
    filled when absent.
    """
    rich = bulletin_to_finding(bulletin, finding.component_ref)

    if rich.cvss > 0:
        if finding.cvss <= 0:
            finding.cvss = rich.cvss
        if finding.severity in ("", "unknown"):
            finding.severity = rich.severity
    finding.has_exploit = finding.has_exploit or rich.has_exploit
    finding.wild_exploited = finding.wild_exploited or rich.wild_exploited
    if rich.aliases:
        finding.aliases = merge_aliases(finding.aliases, rich.aliases)
    if rich.references:
        finding.references = merge_aliases(finding.references, rich.references)
    if finding.epss is None and rich.epss is not None:
        finding.epss = rich.epss
    if finding.ai_score is None and rich.ai_score is not None:
        finding.ai_score = rich.ai_score


class Enricher:
    """Adds severity/exploit/EPSS/AI-score context to findings that already carry an id,
    e.g. those produced by an external static analyzer."""

    def __init__(
        self,
        intel: IntelClient | None,
        enable_ai_score: bool = False,
        id_prefixes: tuple[str, ...] = KNOWN_ID_PREFIXES,
    ) -> None:
        self.intel = intel
        self.enable_ai_score = enable_ai_score
        self.id_prefixes = id_prefixes

    def candidate_ids(self, finding: Finding) -> list[str]:
        if not finding.vuln_id:
            return []
        return [
            vid
            for vid in merge_aliases([finding.vuln_id], finding.aliases)
            if vid.startswith(self.id_prefixes)
        ]

    async def enrich(
        self, findings: list[Finding], stop_event: asyncio.Event | None = None
    ) -> list[Finding]:
        """Enrich ``findings`` in place and return them.

        One batch lookup is attempted first; if it fails the ids are looked up
        one at a time. Setting ``stop_event`` ends the sequential phases early
        and returns whatever was enriched so far.
        """
        intel = self.intel
        if intel is None or not findings:
            return findings

        all_ids: list[str] = []
        for f in findings:
            all_ids.extend(self.candidate_ids(f))
        all_ids = merge_aliases([], all_ids)
        if not all_ids:
            return findings

        try:
            bulletins = await intel.get_multiple_bulletins(all_ids)
        except Exception as e:
            logger.debug(f"Batch fetch failed, falling back to individual lookups: {e}")
            if not await self._enrich_individually(intel, findings, stop_event):
                return findings
        else:
            for f in findings:
                for vid in self.candidate_ids(f):
                    if vid in bulletins:
                        enrich_finding(f, bulletins[vid])
                        break

        if self.enable_ai_score:
            await self._enrich_ai_scores(intel, findings, stop_event)
        return findings

    async def _enrich_individually(
        self, intel: IntelClient, findings: list[Finding], stop_event: asyncio.Event | None
    ) -> bool:
        """Per-id fallback. Returns False if it was stopped early."""
        for i, f in enumerate(findings):
            if stop_event is not None and stop_event.is_set():
                logger.debug(f"Enrichment stopped after {i} findings")
                return False
            for vid in self.candidate_ids(f):
                try:
                    bulletin = await intel.get_bulletin(vid)
                except Exception as e:
                    logger.debug(f"Enrichment lookup failed for {vid}: {e}")
                    continue
                enrich_finding(f, bulletin)
                break
        return True

    async def _enrich_ai_scores(
        self, intel: IntelClient, findings: list[Finding], stop_event: asyncio.Event | None
    ) -> None:
        for f in findings:
            if stop_event is not None and stop_event.is_set():
                return
            if f.ai_score is not None or not f.vuln_id:
                continue
            try:
                score = await intel.get_ai_score(f.vuln_id)
            except Exception as e:
                logger.debug(f"AI score enrichment failed for {f.vuln_id}: {e}")
                continue
            if score is not None:
                f.ai_score = score
