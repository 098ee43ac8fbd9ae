from __future__ import annotations

from vulngate.security.query_builder import LuceneQueryBuilder, PlainQueryBuilder, escape_lucene
from vulngate.security.types import Component


def test_lucene_query_uses_name_and_version():
    q = LuceneQueryBuilder().build(Component(type="library", name="lodash", version="4.17.20"))
    assert q == (
        'affectedSoftware.name:"lodash" AND affectedSoftware.version:"4.17.20" '
        "OR lodash 4.17.20"
    )


def test_lucene_query_prefers_cpe():
    cpe = "cpe:2.3:a:openbsd:openssh:8.2:*:*:*:*:*:*:*"
    q = LuceneQueryBuilder().build(
        Component(type="application", name="openssh", version="8.2", cpe=cpe)
    )
    assert q == f'affectedSoftware.cpe:"{cpe}"'


def test_lucene_query_escapes_special_characters():
    q = LuceneQueryBuilder().build(
        Component(type="library", name='we"ird:(pkg)', version="1.0[beta]")
    )
    assert 'affectedSoftware.name:"we\\"ird:(pkg)"' in q
    assert q.endswith('we\\"ird\\:\\(pkg\\) 1.0\\[beta\\]')


def test_escape_lucene_backslash_first():
    assert escape_lucene("a\\:b") == "a\\\\\\:b"


def test_builders_return_empty_without_name_or_version():
    comp = Component(type="library", name="", version="1.0")
    assert LuceneQueryBuilder().build(comp) == ""
    assert PlainQueryBuilder().build(comp) == ""


def test_plain_query():
    comp = Component(type="library", name="nginx", version="1.18.0")
    assert PlainQueryBuilder().build(comp) == "nginx 1.18.0"
