from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from vulngate.exceptions import ValidationError

logger = logging.getLogger(__name__)

SUPPRESSING_STATUSES = frozenset({"not_affected", "fixed"})


def parse_vex(text: str) -> dict[str, str]:
    """Parse a minimal OpenVEX document into ``{vulnerability id: status}``.

    The ``products`` of a statement are ignored: suppression applies to the
    vulnerability id regardless of artifact.
    """
    try:
        doc: Any = json.loads(text)
    except ValueError as e:
        raise ValidationError(f"parsing VEX document: {e}") from e
    if not isinstance(doc, Mapping):
        raise ValidationError("VEX document must be a JSON object")

    statements = doc.get("statements") or []
    if not isinstance(statements, list):
        raise ValidationError("VEX 'statements' must be a list")

    statuses: dict[str, str] = {}
    for stmt in statements:
        if not isinstance(stmt, Mapping):
            raise ValidationError("VEX statement must be an object")
        vuln = stmt.get("vulnerability")
        name = vuln.get("name") if isinstance(vuln, Mapping) else None
        if not name:
            continue
        status = str(stmt.get("status") or "")
        if name in statuses:
            logger.warning(
                f"Duplicate VEX statement for {name}, overwriting {statuses[name]!r} with {status!r}"
            )
        statuses[str(name)] = status
    return statuses


def load_vex(path: str | Path) -> dict[str, str]:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ValidationError(f"reading VEX document {path}: {e}") from e
    return parse_vex(text)
