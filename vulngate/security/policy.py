#!/usr/bin/env python3
"""
Policy gate: which findings matter, and whether the run passes.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from vulngate.exceptions import ValidationError
from vulngate.security.types import ExitCode, Finding, Severity
from vulngate.security.vex import SUPPRESSING_STATUSES, load_vex

logger = logging.getLogger(__name__)


def parse_fail_on(value: str | None) -> Severity:
    """Threshold from a config string; "", "none" and None disable the gate."""
    if value is None or value.strip().lower() in ("", "none"):
        return Severity.NONE
    level = Severity.parse(value)
    if level is Severity.NONE:
        raise ValidationError(f"unknown severity threshold: {value!r}")
    return level


def is_suppressed(statuses: Mapping[str, str], finding: Finding) -> bool:
    """Suppression by exploitability status.

    A status on the primary id is authoritative. Aliases are consulted only
    when the primary id has no status at all.
    """
    if not statuses:
        return False
    if finding.vuln_id in statuses:
        return statuses[finding.vuln_id] in SUPPRESSING_STATUSES
    return any(statuses.get(alias) in SUPPRESSING_STATUSES for alias in finding.aliases)


@dataclass
class Policy:
    fail_on: Severity = Severity.NONE
    ignore_ids: frozenset[str] = frozenset()
    vex_statuses: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_options(
        cls,
        fail_on: str | None = None,
        ignore_ids: Iterable[str] | None = None,
        vex_path: str | Path | None = None,
    ) -> Policy:
        statuses = load_vex(vex_path) if vex_path else {}
        return cls(
            fail_on=parse_fail_on(fail_on),
            ignore_ids=frozenset(i.strip() for i in ignore_ids or [] if i.strip()),
            vex_statuses=statuses,
        )

    def is_ignored(self, finding: Finding) -> bool:
        return finding.vuln_id in self.ignore_ids or any(
            alias in self.ignore_ids for alias in finding.aliases
        )

    def filter(self, findings: Iterable[Finding]) -> list[Finding]:
        """Drop ignored and suppressed findings."""
        kept: list[Finding] = []
        dropped = 0
        for f in findings:
            if self.is_ignored(f) or is_suppressed(self.vex_statuses, f):
                dropped += 1
                continue
            kept.append(f)
        if dropped:
            logger.info(f"Policy dropped {dropped} ignored or suppressed findings")
        return kept

    def exit_code(self, findings: Iterable[Finding]) -> ExitCode:
        if self.fail_on is Severity.NONE:
            return ExitCode.OK
        for f in findings:
            if f.severity_level >= self.fail_on:
                return ExitCode.FINDINGS
        return ExitCode.OK
