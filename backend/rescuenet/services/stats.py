from __future__ import annotations
from collections import Counter
from typing import Iterable

from ..schemas import SEVERITIES, STATUSES, Report, Stats
from ..storage import now_ms


def compute_stats(reports: Iterable[Report], active_rescuers: int, connected_clients: int) -> Stats:
    reports = list(reports)
    by_status = Counter(r.status for r in reports)
    by_severity = Counter(r.severity for r in reports)
    return Stats(
        total=len(reports),
        by_status={s: by_status.get(s, 0) for s in STATUSES},
        by_severity={s: by_severity.get(s, 0) for s in SEVERITIES},
        active_rescuers=active_rescuers,
        connected_clients=connected_clients,
        last_update=now_ms(),
    )
