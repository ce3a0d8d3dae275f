from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import List, Optional

from .entities import FeedbackRecord
from .errors import FeedbackPersistError
from .innovation import export_learning_samples
from .io import append_jsonl, read_jsonl, write_jsonl

logger = logging.getLogger(__name__)


class FeedbackStore:
    """Append-only JSONL log of human adjustments.

    Records are never rewritten or deleted; every view (current adjustments,
    exports) is derived by reading the log. The log lives outside the cache
    directory, so clearing cached paper state leaves it intact.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, record: FeedbackRecord) -> None:
        try:
            with self._lock:
                append_jsonl(self.path, record.to_dict())
        except OSError as e:
            raise FeedbackPersistError(f"Cannot append feedback to {self.path}: {e}") from e
        logger.info(
            f"Feedback recorded: {record.fingerprint} {record.dimension} "
            f"{record.ai_score} -> {record.human_score}"
        )

    def records(
        self, fingerprint: Optional[str] = None, model_id: Optional[str] = None
    ) -> List[FeedbackRecord]:
        if not self.path.exists():
            return []
        out = []
        for row in read_jsonl(self.path):
            record = FeedbackRecord.from_dict(row)
            if fingerprint is not None and record.fingerprint != fingerprint:
                continue
            if model_id is not None and record.model_id != model_id:
                continue
            out.append(record)
        return out

    def export_log(self, out: Path, fingerprint: Optional[str] = None) -> int:
        """Write flat FeedbackRecords as JSONL; returns the number written."""
        count = write_jsonl(Path(out), (r.to_dict() for r in self.records(fingerprint)))
        logger.info(f"Exported {count} feedback records to {out}")
        return count

    def export_samples(self, out: Path, fingerprint: Optional[str] = None) -> int:
        """Write one learning sample per record whose scores differ."""
        samples = export_learning_samples(self.records(fingerprint))
        count = write_jsonl(Path(out), (s.to_dict() for s in samples))
        logger.info(f"Exported {count} learning samples to {out}")
        return count
