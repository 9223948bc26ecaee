"""
Bounded, append-only improvement ledger shared by all loops of a supervisor.
"""

import json
import logging
from collections import deque
from pathlib import Path
from threading import Lock
from typing import Any, Union

from .models import ImprovementRecord

logger = logging.getLogger(__name__)


class ImprovementLedger:
    """Keeps the most recent ``max_records`` improvements."""

    def __init__(self, max_records: int = 100):
        self.max_records = max_records
        self._records: deque = deque(maxlen=max_records)
        self._total = 0
        self._lock = Lock()

    def append(self, record: ImprovementRecord) -> None:
        with self._lock:
            self._records.append(record)
            self._total += 1
        logger.info(
            f"Improvement recorded for {record.loop_name} "
            f"(score {record.before_score:.2f}, {record.actions_applied} actions)"
        )

    def recent(self, count: int = 10) -> list[ImprovementRecord]:
        with self._lock:
            if count <= 0:
                return []
            return list(self._records)[-count:]

    def for_loop(self, loop_name: str) -> list[ImprovementRecord]:
        with self._lock:
            return [r for r in self._records if r.loop_name == loop_name]

    @property
    def total_recorded(self) -> int:
        """Records ever appended, including those evicted from the window."""
        return self._total

    def to_list(self) -> list[dict[str, Any]]:
        with self._lock:
            return [r.to_dict() for r in self._records]

    def export_jsonl(self, path: Union[str, Path]) -> int:
        """Append the retained records to a JSON Lines file; returns lines written."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        rows = self.to_list()
        with open(path, "a", encoding="utf-8") as f:
            for row in rows:
                f.write(json.dumps(row) + "\n")
        logger.debug(f"Exported {len(rows)} improvement records to {path}")
        return len(rows)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        return len(self._records)
