"""Content-addressed, on-disk stage cache.

Entries live at ``<root>/<fingerprint>/<stage>/<variant>.json`` and hold the
inputs that produced them next to the value::

    {"inputs": {...}, "digest": "...", "value": {...}}

A lookup whose inputs digest differs from the stored one is a miss. Writes go
through ``io.atomic_write`` so a cancelled or crashed run never leaves a
partially written entry behind.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from .hashing import digest_inputs
from .io import atomic_write

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    UPLOADED = "uploaded"
    NORMALIZED = "normalized"
    INDEXED = "indexed"
    REVIEWED = "reviewed"
    SCORED = "scored"
    ASSESSED = "assessed"


STAGE_ORDER = list(Stage)

# stage -> stages whose cached output it is computed from
DEPENDS_ON: Dict[Stage, Set[Stage]] = {
    Stage.UPLOADED: set(),
    Stage.NORMALIZED: {Stage.UPLOADED},
    Stage.INDEXED: {Stage.NORMALIZED},
    Stage.REVIEWED: {Stage.NORMALIZED},
    Stage.SCORED: {Stage.REVIEWED},
    Stage.ASSESSED: {Stage.NORMALIZED, Stage.REVIEWED},
}


def dependents(stage: Stage) -> Set[Stage]:
    """``stage`` plus every stage that transitively depends on it."""
    out = {stage}
    changed = True
    while changed:
        changed = False
        for s, deps in DEPENDS_ON.items():
            if s not in out and deps & out:
                out.add(s)
                changed = True
    return out


_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def _safe(variant: str) -> str:
    return _UNSAFE.sub("_", variant) or "default"


class CacheStore:
    def __init__(self, root: Path):
        self.root = Path(root)

    def path(self, fingerprint: str, stage: Stage, variant: str = "default") -> Path:
        return self.root / fingerprint / Stage(stage).value / f"{_safe(variant)}.json"

    def get(
        self,
        fingerprint: str,
        stage: Stage,
        variant: str = "default",
        inputs: Optional[Dict[str, Any]] = None,
    ) -> Optional[Any]:
        """Cached value, or None on a miss or an inputs mismatch."""
        path = self.path(fingerprint, stage, variant)
        if not path.exists():
            logger.debug(f"Cache miss {fingerprint}/{stage.value}/{variant}")
            return None
        with path.open(encoding="utf-8") as f:
            entry = json.load(f)
        if inputs is not None and entry.get("digest") != digest_inputs(inputs):
            logger.info(f"Cache stale {fingerprint}/{stage.value}/{variant}: inputs changed")
            return None
        logger.debug(f"Cache hit {fingerprint}/{stage.value}/{variant}")
        return entry["value"]

    def put(
        self,
        fingerprint: str,
        stage: Stage,
        value: Any,
        variant: str = "default",
        inputs: Optional[Dict[str, Any]] = None,
    ) -> Path:
        inputs = inputs or {}
        entry = {"inputs": inputs, "digest": digest_inputs(inputs), "value": value}
        path = self.path(fingerprint, stage, variant)
        atomic_write(path, json.dumps(entry, ensure_ascii=False, sort_keys=True).encode("utf-8"))
        return path

    def has(self, fingerprint: str, stage: Stage, variant: Optional[str] = None) -> bool:
        stage_dir = self.root / fingerprint / Stage(stage).value
        if variant is not None:
            return self.path(fingerprint, stage, variant).exists()
        return stage_dir.is_dir() and any(stage_dir.glob("*.json"))

    def variants(self, fingerprint: str, stage: Stage) -> List[str]:
        stage_dir = self.root / fingerprint / Stage(stage).value
        if not stage_dir.is_dir():
            return []
        return sorted(p.stem for p in stage_dir.glob("*.json"))

    def stages(self, fingerprint: str) -> List[Stage]:
        """Stages with at least one committed entry, in pipeline order."""
        return [s for s in STAGE_ORDER if self.has(fingerprint, s)]

    def invalidate(self, fingerprint: str, stages: Iterable[Stage]) -> List[Stage]:
        """Drop ``stages`` and everything downstream of them; returns what was removed."""
        doomed: Set[Stage] = set()
        for stage in stages:
            doomed |= dependents(Stage(stage))
        removed = []
        for stage in STAGE_ORDER:
            stage_dir = self.root / fingerprint / stage.value
            if stage in doomed and stage_dir.exists():
                shutil.rmtree(stage_dir)
                removed.append(stage)
        if removed:
            logger.info(f"Invalidated {fingerprint}: {[s.value for s in removed]}")
        return removed

    def clear(self, fingerprint: str) -> bool:
        paper_dir = self.root / fingerprint
        if not paper_dir.exists():
            return False
        shutil.rmtree(paper_dir)
        logger.info(f"Cleared cached state for {fingerprint}")
        return True

    def fingerprints(self) -> List[str]:
        if not self.root.exists():
            return []
        return sorted(p.name for p in self.root.iterdir() if p.is_dir())
