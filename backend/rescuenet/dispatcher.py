from __future__ import annotations
import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional

from .registry import Binding, ConnectionRegistry
from .schemas import Report
from .services.deidentify import sanitize
from .storage import now_ms

logger = logging.getLogger(__name__)

REPORT_NEW = "report:new"
REPORT_UPDATE = "report:update"
REPORT_STATUS = "report:status"
REPORTS_SYNC = "reports:sync"
RESCUER_LOCATION = "rescuer:location"
ERROR = "error"


def envelope(event: str, data: Any) -> Dict[str, Any]:
    return {"event": event, "data": data}


def _payload(report: Report) -> Dict[str, Any]:
    return sanitize(report).model_dump(by_alias=True)


class BroadcastDispatcher:
    """Fans events out to registered connections.

    Every report leaving through here is sanitized first. Delivery is
    fire-and-forget per target: a target that refuses a message is evicted
    from the registry and the remaining targets are still served. Nothing in
    here raises into the caller.

    Report broadcasts and snapshot replies share one fan-out lock, so a
    snapshot is never queued behind an update newer than itself.
    """

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry
        self._fanout = threading.Lock()

    def _deliver(self, targets: Iterable[Binding], message: Dict[str, Any]) -> int:
        delivered = 0
        for binding in targets:
            try:
                ok = binding.transport.deliver(message)
            except Exception as e:
                logger.warning("Delivery to %s raised: %s" % (binding.connection_id, e))
                ok = False
            if ok:
                delivered += 1
            else:
                self.registry.unregister(binding.connection_id)
                logger.warning("Evicted stale connection %s" % binding.connection_id)
        return delivered

    def _publish(self, event: str, targets: Iterable[Binding], data: Any) -> int:
        try:
            return self._deliver(targets, envelope(event, data))
        except Exception as e:
            logger.error("Broadcast of %s failed: %s" % (event, e))
            return 0

    def _single(self, connection_id: str) -> List[Binding]:
        binding = self.registry.get(connection_id)
        return [binding] if binding is not None else []

    def report_created(self, report: Report) -> int:
        with self._fanout:
            return self._publish(REPORT_NEW, self.registry.rescuers(), _payload(report))

    def report_updated(self, report: Report) -> int:
        with self._fanout:
            targets: Dict[str, Binding] = {b.connection_id: b for b in self.registry.rescuers()}
            for b in self.registry.watchers(report.short_code):
                targets.setdefault(b.connection_id, b)
            return self._publish(REPORT_UPDATE, targets.values(), _payload(report))

    def sync(self, connection_id: str, reports: Iterable[Report]) -> bool:
        data = [_payload(r) for r in reports]
        return self._publish(REPORTS_SYNC, self._single(connection_id), data) == 1

    def sync_from(self, connection_id: str, read: Callable[[], Iterable[Report]]) -> bool:
        """Read the board with ``read`` and queue it as ``reports:sync``.

        Blocks report broadcasts from the read until the snapshot is queued.
        Call from a worker thread, never from the event loop.
        """
        with self._fanout:
            return self.sync(connection_id, read())

    def report_status(self, connection_id: str, report: Report) -> bool:
        return self._publish(REPORT_STATUS, self._single(connection_id), _payload(report)) == 1

    def status_from(self, connection_id: str, read: Callable[[], Optional[Report]]) -> bool:
        """Like ``sync_from`` for one tracked report; sends nothing when ``read`` finds none."""
        with self._fanout:
            report = read()
            if report is None:
                return False
            return self.report_status(connection_id, report)

    def rescuer_location(self, origin_connection_id: Optional[str], rescuer_id: str, lat: float, lng: float,
                         timestamp: Optional[int] = None) -> int:
        data = {"rescuerId": rescuer_id, "lat": lat, "lng": lng, "timestamp": timestamp or now_ms()}
        return self._publish(RESCUER_LOCATION, self.registry.rescuers(exclude=origin_connection_id), data)

    def error(self, connection_id: str, detail: str) -> bool:
        return self._publish(ERROR, self._single(connection_id), {"detail": detail}) == 1
