from __future__ import annotations
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import NotFoundError
from .storage import normalize_short_code, now_ms

logger = logging.getLogger(__name__)

ROLES = ("unclassified", "user", "rescuer")


@dataclass
class Binding:
    connection_id: str
    transport: Any                  # anything with deliver(message) -> bool
    role: str = "unclassified"
    subscribed_report_code: Optional[str] = None
    rescuer_id: Optional[str] = None
    rescuer_name: Optional[str] = None
    connected_at: int = field(default_factory=now_ms)
    last_location: Optional[Tuple[float, float]] = None


class ConnectionRegistry:
    """Process-local map of live connections and what each one listens for.

    Safe to call from the event loop and from worker threads.
    """

    def __init__(self) -> None:
        self._bindings: Dict[str, Binding] = {}
        self._lock = threading.Lock()

    def register(self, connection_id: str, transport: Any) -> Binding:
        binding = Binding(connection_id=connection_id, transport=transport)
        with self._lock:
            self._bindings[connection_id] = binding
        logger.info("[WS] Client connected: %s" % connection_id)
        return binding

    def _require(self, connection_id: str) -> Binding:
        binding = self._bindings.get(connection_id)
        if binding is None:
            raise NotFoundError("Unknown connection %s" % connection_id)
        return binding

    def identify_as_rescuer(self, connection_id: str, rescuer_id: str, rescuer_name: Optional[str] = None) -> Binding:
        with self._lock:
            binding = self._require(connection_id)
            binding.role = "rescuer"
            binding.rescuer_id = rescuer_id
            binding.rescuer_name = rescuer_name
        logger.info("[WS] Rescuer joined: %s (%s)" % (rescuer_name or rescuer_id, connection_id))
        return binding

    def subscribe_to_report(self, connection_id: str, short_code: str) -> Binding:
        with self._lock:
            binding = self._require(connection_id)
            if binding.role == "unclassified":
                binding.role = "user"
            binding.subscribed_report_code = normalize_short_code(short_code)
        return binding

    def update_location(self, rescuer_id: str, lat: float, lng: float) -> List[str]:
        """Record the rescuer's position on each of its connections; returns their ids."""
        with self._lock:
            mine = [b for b in self._bindings.values() if b.role == "rescuer" and b.rescuer_id == rescuer_id]
            for b in mine:
                b.last_location = (lat, lng)
        return [b.connection_id for b in mine]

    def unregister(self, connection_id: str) -> Optional[Binding]:
        with self._lock:
            binding = self._bindings.pop(connection_id, None)
        if binding is not None:
            logger.info("[WS] Client disconnected: %s" % connection_id)
        return binding

    def get(self, connection_id: str) -> Optional[Binding]:
        return self._bindings.get(connection_id)

    def rescuers(self, exclude: Optional[str] = None) -> List[Binding]:
        with self._lock:
            return [b for b in self._bindings.values() if b.role == "rescuer" and b.connection_id != exclude]

    def watchers(self, short_code: str) -> List[Binding]:
        code = normalize_short_code(short_code)
        with self._lock:
            return [b for b in self._bindings.values() if b.role == "user" and b.subscribed_report_code == code]

    def count(self) -> int:
        return len(self._bindings)

    def __len__(self) -> int:
        return self.count()
