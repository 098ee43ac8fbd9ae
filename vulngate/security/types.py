"""
Typed data structures shared by the resolution pipeline.

Bulletins are parsed from the Vulners JSON shape in `Bulletin.from_dict`; the
original payload is kept so the cache can store exactly what was fetched.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class Severity(IntEnum):
    """Ordinal severity scale used for policy thresholds."""

    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @classmethod
    def parse(cls, value: str | None) -> Severity:
        """Case-insensitive lookup; anything unrecognized ("unknown", "") is NONE."""
        if not value:
            return cls.NONE
        try:
            return cls[value.strip().upper()]
        except KeyError:
            return cls.NONE

    def __str__(self) -> str:
        return self.name.lower()


class ExitCode(IntEnum):
    OK = 0  # no findings at or above the threshold
    FINDINGS = 1  # findings at or above the threshold
    USAGE_ERROR = 2
    RUNTIME_ERROR = 3


def score_severity(score: float) -> str:
    """Map a CVSS score to a severity label."""
    if score >= 9.0:
        return "critical"
    elif score >= 7.0:
        return "high"
    elif score >= 4.0:
        return "medium"
    elif score > 0.0:
        return "low"
    else:
        return "none"


@dataclass(frozen=True)
class Component:
    """Inventoried software unit handed over by an inventory collector."""

    type: str
    name: str
    version: str
    purl: str = ""
    cpe: str = ""
    locations: tuple[str, ...] = ()
    ecosystem: str = ""

    @property
    def ref(self) -> str:
        """Identity used to attribute findings (``name@version``)."""
        return f"{self.name}@{self.version}"


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _cvss3_score(raw: Any) -> float | None:
    if not isinstance(raw, Mapping):
        return None
    inner = raw.get("cvssV3")
    if isinstance(inner, Mapping) and "baseScore" in inner:
        return _as_float(inner.get("baseScore"))
    for key in ("score", "baseScore"):
        if key in raw:
            return _as_float(raw.get(key))
    return None


def _ai_score(raw: Any) -> float | None:
    if isinstance(raw, Mapping):
        score = raw.get("score", raw.get("value"))
        if isinstance(score, Mapping):
            return _as_float(score.get("value"))
        return _as_float(score)
    return _as_float(raw)


@dataclass(frozen=True)
class Bulletin:
    """Vulnerability advisory record from the intelligence source."""

    id: str
    title: str = ""
    description: str = ""
    type: str = ""
    cvss: float | None = None
    cvss3: float | None = None
    cvelist: tuple[str, ...] = ()
    references: tuple[str, ...] = ()
    href: str = ""
    epss: tuple[float, ...] = ()
    ai_score: float | None = None
    wild_exploited: bool = False
    modified: str = ""
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Bulletin:
        """Build a bulletin from a Vulners document or search hit (``{"_source": ...}``)."""
        source = data.get("_source")
        if isinstance(source, Mapping):
            data = source

        cvss_raw = data.get("cvss")
        cvss = _as_float(cvss_raw.get("score")) if isinstance(cvss_raw, Mapping) else None

        epss: list[float] = []
        for entry in data.get("epss") or []:
            value = _as_float(entry.get("epss")) if isinstance(entry, Mapping) else _as_float(entry)
            if value is not None:
                epss.append(value)

        enchantments = data.get("enchantments")
        wild = False
        if isinstance(enchantments, Mapping):
            exploitation = enchantments.get("exploitation")
            if isinstance(exploitation, Mapping):
                wild = bool(exploitation.get("wildExploited"))

        return cls(
            id=str(data.get("id") or ""),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            type=str(data.get("type") or ""),
            cvss=cvss,
            cvss3=_cvss3_score(data.get("cvss3")),
            cvelist=tuple(str(c) for c in data.get("cvelist") or []),
            references=tuple(str(r) for r in data.get("references") or []),
            href=str(data.get("href") or ""),
            epss=tuple(epss),
            ai_score=_ai_score(data.get("ai")) if data.get("ai") is not None else None,
            wild_exploited=wild,
            modified=str(data.get("modified") or data.get("lastseen") or ""),
            raw=dict(data),
        )

    def to_dict(self) -> dict[str, Any]:
        """Payload persisted by the cache; the fetched document when there is one."""
        if self.raw:
            payload = dict(self.raw)
            payload.setdefault("id", self.id)
            payload.setdefault("title", self.title)
            return payload

        payload: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "cvelist": list(self.cvelist),
            "references": list(self.references),
            "href": self.href,
            "modified": self.modified,
        }
        if self.cvss is not None:
            payload["cvss"] = {"score": self.cvss}
        if self.cvss3 is not None:
            payload["cvss3"] = {"cvssV3": {"baseScore": self.cvss3}}
        if self.epss:
            payload["epss"] = [{"epss": e} for e in self.epss]
        if self.ai_score is not None:
            payload["ai"] = {"score": {"value": self.ai_score}}
        if self.wild_exploited:
            payload["enchantments"] = {"exploitation": {"wildExploited": True}}
        return payload


@dataclass
class Finding:
    """A (vulnerability, component) association.

    Mutable so the enricher can upgrade fields in place.
    """

    vuln_id: str
    component_ref: str = ""
    aliases: list[str] = field(default_factory=list)
    severity: str = "unknown"
    cvss: float = 0.0
    epss: float | None = None
    ai_score: float | None = None
    has_exploit: bool = False
    wild_exploited: bool = False
    fix: str = ""
    references: list[str] = field(default_factory=list)
    reachability: str = ""

    @property
    def dedup_key(self) -> str:
        return f"{self.vuln_id}|{self.component_ref}"

    @property
    def severity_level(self) -> Severity:
        return Severity.parse(self.severity)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "vulnID": self.vuln_id,
            "severity": self.severity,
            "componentRef": self.component_ref,
        }
        if self.aliases:
            out["aliases"] = list(self.aliases)
        if self.cvss:
            out["cvss"] = self.cvss
        if self.epss is not None:
            out["epss"] = self.epss
        if self.ai_score is not None:
            out["aiScore"] = self.ai_score
        if self.has_exploit:
            out["hasExploit"] = True
        if self.wild_exploited:
            out["wildExploited"] = True
        if self.fix:
            out["fix"] = self.fix
        if self.references:
            out["references"] = list(self.references)
        if self.reachability:
            out["reachability"] = self.reachability
        return out


@dataclass(frozen=True)
class CollectionMeta:
    collection: str
    count: int
    synced_at: datetime


@dataclass
class SearchResult:
    total: int = 0
    bulletins: list[Bulletin] = field(default_factory=list)
