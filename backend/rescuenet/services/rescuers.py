from __future__ import annotations
import logging
from typing import List, Optional

from ..db import ReportStore
from ..errors import InvalidInputError, NotFoundError
from ..schemas import Rescuer, RescuerOut
from ..storage import new_id, now_ms
from .deidentify import sanitize_rescuer

logger = logging.getLogger(__name__)

DEFAULT_ORGANIZATION = "Independent"


class RescuerService:
    """Registration and liveness of rescuers. Identity is self-asserted."""

    def __init__(self, store: ReportStore, active_window_s: int = 300):
        self.store = store
        self.active_window_ms = active_window_s * 1000

    def register(self, name: Optional[str], phone: Optional[str] = None,
                 organization: Optional[str] = None) -> Rescuer:
        name = (name or "").strip()
        if not name:
            raise InvalidInputError("Name is required")
        now = now_ms()
        rescuer = Rescuer(
            id=new_id(),
            name=name,
            phone=(phone or "").strip() or None,
            organization=(organization or "").strip() or DEFAULT_ORGANIZATION,
            registered_at=now,
            last_seen=now,
            is_active=True,
        )
        self.store.save_rescuer(rescuer)
        logger.info("[RESCUER] Registered: %s (%s)" % (rescuer.name, rescuer.organization))
        return rescuer

    def heartbeat(self, rescuer_id: Optional[str]) -> Rescuer:
        if not rescuer_id:
            raise InvalidInputError("Rescuer ID is required")
        return self.store.update_rescuer(rescuer_id, {"last_seen": now_ms(), "is_active": True})

    def identify(self, rescuer_id: str, name: Optional[str] = None,
                 organization: Optional[str] = None) -> Rescuer:
        """Refresh a rescuer seen on the live channel, creating it if unknown."""
        now = now_ms()
        patch = {"last_seen": now, "is_active": True}
        if name:
            patch["name"] = name
        if organization:
            patch["organization"] = organization
        try:
            return self.store.update_rescuer(rescuer_id, patch)
        except NotFoundError:
            rescuer = Rescuer(
                id=rescuer_id,
                name=name or "Rescuer",
                organization=organization or DEFAULT_ORGANIZATION,
                registered_at=now,
                last_seen=now,
            )
            return self.store.save_rescuer(rescuer)

    def update_location(self, rescuer_id: str, lat: float, lng: float) -> Optional[Rescuer]:
        try:
            return self.store.update_rescuer(rescuer_id, {"lat": lat, "lng": lng, "last_seen": now_ms()})
        except NotFoundError:
            return None

    def is_active(self, rescuer: Rescuer, now: Optional[int] = None) -> bool:
        now = now if now is not None else now_ms()
        return rescuer.is_active and now - rescuer.last_seen <= self.active_window_ms

    def list(self) -> List[RescuerOut]:
        now = now_ms()
        return [sanitize_rescuer(r, self.is_active(r, now)) for r in self.store.list_rescuers()]

    def active_count(self) -> int:
        now = now_ms()
        return sum(1 for r in self.store.list_rescuers() if self.is_active(r, now))
