from __future__ import annotations
from typing import Dict, List
from datetime import datetime, timezone
from uuid import uuid4
import threading

from .schemas import ProcessingLog


class AuditLog:
    """Append-only record of committed transitions, per report."""

    def __init__(self) -> None:
        self._logs: Dict[str, List[ProcessingLog]] = {}
        self._lock = threading.Lock()

    def write(self, report_id: str, event: str, detail: str | None = None) -> ProcessingLog:
        log = ProcessingLog(
            id=str(uuid4()),
            report_id=report_id,
            created_at=datetime.now(timezone.utc),
            event=event,
            detail=detail,
        )
        with self._lock:
            self._logs.setdefault(report_id, []).append(log)
        return log

    def for_report(self, report_id: str) -> List[ProcessingLog]:
        with self._lock:
            return list(self._logs.get(report_id, []))
