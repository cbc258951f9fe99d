"""Audit records for redaction runs.

Produces an audit JSON alongside the output PDF including config snapshot,
tier, hashes, version, per-page box summaries, and an optional HMAC signature
when ``DOCREDACT_HMAC_KEY`` is set.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict, Iterable, List, Mapping, Optional
from pathlib import Path
import getpass
import hashlib
import hmac
import socket
import time

import orjson

from .settings import get_settings
from .types import Entity, EntityType, RedactionBox


def _sha256_file(path: str | Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def audit_path_for(output_path: str | Path) -> Path:
    return Path(output_path).with_suffix(".audit.json")


def _page_summaries(
    boxes: List[RedactionBox], types: Mapping[str, EntityType]
) -> List[Dict[str, Any]]:
    by_page: Dict[int, Counter] = {}
    for box in boxes:
        etype = types.get(box.entity_id or "")
        label = etype.value if etype is not None else "MANUAL"
        by_page.setdefault(box.page, Counter())[label] += 1
    return [
        {"page": page, "boxes": sum(c.values()), "by_type": dict(c)}
        for page, c in sorted(by_page.items())
    ]


def write_audit(
    input_path: str,
    output_path: str,
    applied_boxes: Iterable[RedactionBox],
    entities: Iterable[Entity],
    cfg: Dict[str, Any],
    tier: Optional[Dict[str, Any]] = None,
    errors: Optional[List[str]] = None,
    watermark: bool = False,
) -> Path:
    """Write an audit JSON next to the output PDF and return its path."""
    out_pdf = Path(output_path)
    inp = Path(input_path)
    audit_path = audit_path_for(out_pdf)
    from docredact import __version__ as version

    boxes = list(applied_boxes)
    types = {e.id: e.type for e in entities}
    pages = _page_summaries(boxes, types)

    record = {
        "version": version,
        "timestamp": int(time.time()),
        "user": getpass.getuser(),
        "host": socket.gethostname(),
        "input": {
            "path": str(inp),
            "sha256": _sha256_file(inp),
        },
        "output": {
            "path": str(out_pdf),
            "sha256": _sha256_file(out_pdf) if out_pdf.exists() else None,
        },
        "config": cfg,
        "tier": tier,
        "result": {
            "summary": {
                "boxes": len(boxes),
                "pages_redacted": len(pages),
                "watermark": watermark,
            },
            "pages": pages,
        },
        "errors": errors or [],
    }

    # Signature over the compact record, before the hmac field is added.
    key = get_settings().hmac_key
    if key:
        sig = hmac.new(key.encode("utf-8"), orjson.dumps(record), hashlib.sha256).hexdigest()
        record["hmac"] = {"alg": "HMAC-SHA256", "key_hint": "env:DOCREDACT_HMAC_KEY", "value": sig}

    audit_path.write_bytes(orjson.dumps(record, option=orjson.OPT_INDENT_2))
    return audit_path


__all__ = ["audit_path_for", "write_audit"]
