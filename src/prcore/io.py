from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator


def read_jsonl(path: Path) -> Iterator[Dict[str, Any]]:
    with path.open(encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            yield json.loads(line)


def append_jsonl(path: Path, record: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    line = json.dumps(record, ensure_ascii=False) + "\n"
    # one write per record keeps concurrent appends line-atomic
    with path.open("a", encoding="utf-8") as f:
        f.write(line)


def write_jsonl(path: Path, records: Iterable[Dict[str, Any]]) -> int:
    count = 0
    lines = []
    for record in records:
        lines.append(json.dumps(record, ensure_ascii=False) + "\n")
        count += 1
    atomic_write(path, "".join(lines).encode("utf-8"))
    return count


def atomic_write(path: Path, data: bytes) -> None:
    """Write to a sibling temp file, then rename over the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f"{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        tmp.write_bytes(data)
        tmp.replace(path)
    finally:
        if tmp.exists():
            tmp.unlink()
