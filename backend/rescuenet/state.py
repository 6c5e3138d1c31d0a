from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from .audit import AuditLog
from .config import Settings
from .db import ReportStore, get_db
from .dispatcher import BroadcastDispatcher
from .registry import ConnectionRegistry
from .schemas import Stats
from .services.claims import ClaimEngine
from .services.notifier import SmsNotifier
from .services.rescuers import RescuerService
from .services.stats import compute_stats
from .storage import now_ms

logger = logging.getLogger(__name__)


class Coordinator:
    """Everything one running service shares, built once from settings and
    handed to the HTTP and WebSocket handlers through ``app.state``."""

    def __init__(self, settings: Settings, store: Optional[ReportStore] = None, notifier: Any = None):
        self.settings = settings
        self.store = store if store is not None else get_db(settings)
        self.registry = ConnectionRegistry()
        self.dispatcher = BroadcastDispatcher(self.registry)
        self.audit = AuditLog()
        self.notifier = notifier if notifier is not None else SmsNotifier(settings)
        self.engine = ClaimEngine(
            self.store,
            self.dispatcher,
            notifier=self.notifier,
            audit=self.audit,
            claim_policy=settings.claim_policy,
            short_code_attempts=settings.short_code_attempts,
        )
        self.rescuers = RescuerService(self.store, settings.rescuer_active_window_s)
        logger.info("Coordinator ready (store=%s, claim_policy=%s)" % (settings.store_backend, settings.claim_policy))

    def stats(self) -> Stats:
        return compute_stats(self.store.list(), self.rescuers.active_count(), self.registry.count())

    def health(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "timestamp": now_ms(),
            "reports": self.store.count(),
            "rescuers": len(self.store.list_rescuers()),
            "connectedClients": self.registry.count(),
        }

    def close(self) -> None:
        shutdown = getattr(self.notifier, "shutdown", None)
        if shutdown is not None:
            shutdown()
