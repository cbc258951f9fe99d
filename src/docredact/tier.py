"""Tier quotas.

A tier caps how many pages a document may have, how many custom patterns a
user may keep, and whether exports must carry a watermark. Tiers are YAML (or
JSON) files; ``free`` and ``pro`` ship with the package and can be selected by
name at runtime.
"""

from __future__ import annotations

from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any, Dict, Optional, Union

import orjson
import yaml


@dataclass(frozen=True)
class TierLimits:
    """Quota set consulted before processing and during export.

    Attributes
    ----------
    name:
        Tier identifier.
    max_pages:
        Largest page count a document may have.
    max_documents:
        Documents per user (informational; not enforced by the core).
    max_custom_patterns:
        Upper bound on stored custom patterns.
    watermark_required:
        Force the export watermark regardless of the caller's choice.
    """

    name: str = "free"
    max_pages: int = 50
    max_documents: int = 100
    max_custom_patterns: int = 10
    watermark_required: bool = False

    def allows_pages(self, page_count: int) -> bool:
        return page_count <= self.max_pages

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "max_pages": self.max_pages,
            "max_documents": self.max_documents,
            "max_custom_patterns": self.max_custom_patterns,
            "watermark_required": self.watermark_required,
        }

    @staticmethod
    def from_file(path: Union[str, Path, Traversable]) -> "TierLimits":
        if isinstance(path, Traversable) and not isinstance(path, Path):
            text = path.read_text(encoding="utf-8")
            stem = Path(path.name).stem
            suffix = Path(path.name).suffix.lower()
        else:
            p = Path(path)
            if not p.exists():
                raise FileNotFoundError(f"Tier file not found: {path}")
            text = p.read_text(encoding="utf-8")
            stem = p.stem
            suffix = p.suffix.lower()
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(text) or {}
        else:
            data = orjson.loads(text)
        return TierLimits(
            name=data.get("name", stem),
            max_pages=int(data.get("max_pages", 50)),
            max_documents=int(data.get("max_documents", 100)),
            max_custom_patterns=int(data.get("max_custom_patterns", 10)),
            watermark_required=bool(data.get("watermark_required", False)),
        )


def find_builtin_tier(name: str) -> Optional[Traversable]:
    """Locate a packaged tier definition by name."""
    ref = resources.files("docredact.data").joinpath("tiers", f"{name}.yaml")
    if ref.is_file():
        return ref
    return None


def resolve_tier(name_or_path: Optional[str]) -> TierLimits:
    """Load a tier from a file path or a packaged name; default to ``free``."""
    if not name_or_path:
        name_or_path = "free"
    path = Path(name_or_path)
    if path.exists():
        return TierLimits.from_file(path)
    found = find_builtin_tier(name_or_path)
    if found is None:
        raise FileNotFoundError(f"Unknown tier: {name_or_path}")
    return TierLimits.from_file(found)


__all__ = ["TierLimits", "find_builtin_tier", "resolve_tier"]
