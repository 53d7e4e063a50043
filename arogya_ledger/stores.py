from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .models import LedgerStats

logger = logging.getLogger("arogya.stores")


def load_json_file(path: Path) -> Any:
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        logger.warning("SEED_UNREADABLE path=%s", path, exc_info=True)
        return None


class PatientRecordStore:
    """Read-only seed patient records keyed by ``recordId``."""

    def __init__(self, records: Optional[List[Mapping[str, Any]]] = None) -> None:
        self._records: List[Dict[str, Any]] = [
            dict(row) for row in (records or []) if isinstance(row, Mapping)
        ]

    @classmethod
    def from_path(cls, path: str | Path | None) -> "PatientRecordStore":
        if path is None:
            return cls()
        payload = load_json_file(Path(path))
        if not isinstance(payload, list):
            logger.info("SEED_MISSING path=%s using empty record list", path)
            return cls()
        return cls(payload)

    def list_records(self) -> List[Dict[str, Any]]:
        return [dict(row) for row in self._records]

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        needle = str(record_id).strip()
        for row in self._records:
            if row.get("recordId") == needle:
                return dict(row)
        return None

    def __len__(self) -> int:
        return len(self._records)


def load_stats_seed(raw: Optional[Mapping[str, Any]] = None) -> LedgerStats:
    if not raw:
        return LedgerStats()
    return LedgerStats.from_dict(raw)
