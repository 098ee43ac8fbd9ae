from __future__ import annotations

import pytest

from vulngate.security.types import Bulletin, Component, Finding, Severity, score_severity


@pytest.mark.parametrize(
    "score, expected",
    [
        (10.0, "critical"),
        (9.0, "critical"),
        (8.9, "high"),
        (7.0, "high"),
        (6.9, "medium"),
        (4.0, "medium"),
        (3.9, "low"),
        (0.1, "low"),
        (0.0, "none"),
    ],
)
def test_score_severity_bands(score, expected):
    assert score_severity(score) == expected


def test_severity_parse_is_case_insensitive_and_lenient():
    assert Severity.parse("HIGH") is Severity.HIGH
    assert Severity.parse(" critical ") is Severity.CRITICAL
    assert Severity.parse("unknown") is Severity.NONE
    assert Severity.parse(None) is Severity.NONE
    assert Severity.CRITICAL > Severity.HIGH > Severity.MEDIUM > Severity.LOW > Severity.NONE
    assert str(Severity.MEDIUM) == "medium"


def test_component_ref():
    comp = Component(type="library", name="openssl", version="1.1.1k")
    assert comp.ref == "openssl@1.1.1k"


def test_bulletin_from_search_hit_unwraps_source():
    hit = {
        "_source": {
            "id": "GHSA-1",
            "title": "Heap overflow",
            "type": "exploit",
            "cvss": {"score": 5.0},
            "cvss3": {"cvssV3": {"baseScore": 9.8}},
            "cvelist": ["CVE-2024-0001"],
            "epss": [{"epss": 0.42}, {"epss": 0.1}],
            "ai": {"score": {"value": 7.5}},
            "enchantments": {"exploitation": {"wildExploited": True}},
            "href": "https://example.test/GHSA-1",
        }
    }
    b = Bulletin.from_dict(hit)
    assert b.id == "GHSA-1"
    assert b.cvss == 5.0 and b.cvss3 == 9.8
    assert b.cvelist == ("CVE-2024-0001",)
    assert b.epss == (0.42, 0.1)
    assert b.ai_score == 7.5
    assert b.wild_exploited is True
    # The cache persists the original document
    assert b.to_dict()["href"] == "https://example.test/GHSA-1"


def test_bulletin_without_raw_serializes_canonical_shape():
    b = Bulletin(id="CVE-1", title="t", cvss3=7.5, epss=(0.2,))
    payload = b.to_dict()
    again = Bulletin.from_dict(payload)
    assert again.cvss3 == 7.5
    assert again.epss == (0.2,)


def test_finding_to_dict_omits_empty_fields():
    f = Finding(vuln_id="CVE-1", component_ref="a@1", severity="high", cvss=7.5)
    assert f.to_dict() == {
        "vulnID": "CVE-1",
        "severity": "high",
        "componentRef": "a@1",
        "cvss": 7.5,
    }
    assert f.dedup_key == "CVE-1|a@1"
    assert f.severity_level is Severity.HIGH
