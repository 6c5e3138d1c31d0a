"""
Live channel for rescuers and people tracking a report.

Messages both ways are JSON objects ``{"event": name, "data": payload}``
(``action`` is accepted in place of ``event`` from clients). Each socket is
read by one task, so its messages are handled in the order they arrive; its
writes go through a ``WebSocketConnection`` outbox drained by a second task.
"""
from __future__ import annotations
import asyncio
import contextlib
import functools
import json
import logging
from typing import Any, Callable, Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..errors import RescueError
from ..services.cleaning import parse_float
from ..state import Coordinator
from ..storage import new_id, now_ms
from ..transport import WebSocketConnection

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

EVENT_ALIASES = {
    "rescuer:join": "identify-as-rescuer",
    "user:track": "track-report",
    "rescuer:location": "update-rescuer-location",
}


class InvalidMessage(Exception):
    pass


def _as_dict(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise InvalidMessage("data must be an object")
    return data


async def identify_as_rescuer(coord: Coordinator, connection_id: str, data: Any) -> None:
    data = _as_dict(data)
    rescuer_id = str(data.get("id") or "").strip()
    if not rescuer_id:
        raise InvalidMessage("id is required")
    rescuer = await asyncio.to_thread(coord.rescuers.identify, rescuer_id, data.get("name"), data.get("organization"))
    coord.registry.identify_as_rescuer(connection_id, rescuer.id, rescuer.name)
    await asyncio.to_thread(coord.dispatcher.sync_from, connection_id, coord.engine.list_reports)


async def track_report(coord: Coordinator, connection_id: str, data: Any) -> None:
    code = data.get("shortCode") if isinstance(data, dict) else data
    if not isinstance(code, str) or not code.strip():
        raise InvalidMessage("shortCode is required")
    binding = coord.registry.subscribe_to_report(connection_id, code)
    await asyncio.to_thread(
        coord.dispatcher.status_from, connection_id, functools.partial(coord.engine.find, binding.subscribed_report_code)
    )


async def update_rescuer_location(coord: Coordinator, connection_id: str, data: Any) -> None:
    data = _as_dict(data)
    rescuer_id = str(data.get("rescuerId") or "").strip()
    lat, lng = parse_float(data.get("lat")), parse_float(data.get("lng"))
    if not rescuer_id or lat is None or lng is None:
        raise InvalidMessage("rescuerId, lat and lng are required")
    if not -90 <= lat <= 90 or not -180 <= lng <= 180:
        raise InvalidMessage("location out of range")
    await asyncio.to_thread(coord.rescuers.update_location, rescuer_id, lat, lng)
    coord.registry.update_location(rescuer_id, lat, lng)
    coord.dispatcher.rescuer_location(connection_id, rescuer_id, lat, lng, now_ms())


HANDLERS: Dict[str, Callable] = {
    "identify-as-rescuer": identify_as_rescuer,
    "track-report": track_report,
    "update-rescuer-location": update_rescuer_location,
}


async def handle_message(coord: Coordinator, connection_id: str, raw: str) -> None:
    try:
        message = json.loads(raw)
    except ValueError:
        coord.dispatcher.error(connection_id, "invalid JSON")
        return
    if not isinstance(message, dict):
        coord.dispatcher.error(connection_id, "message must be an object")
        return
    name = message.get("event") or message.get("action")
    name = EVENT_ALIASES.get(name, name)
    handler = HANDLERS.get(name)
    if handler is None:
        logger.info("Unknown event %r from %s" % (name, connection_id))
        coord.dispatcher.error(connection_id, "unknown event: %s" % name)
        return
    try:
        await handler(coord, connection_id, message.get("data"))
    except InvalidMessage as e:
        coord.dispatcher.error(connection_id, str(e))
    except RescueError as e:
        coord.dispatcher.error(connection_id, e.detail)


@router.websocket("/ws")
async def realtime(websocket: WebSocket) -> None:
    coord: Coordinator = websocket.app.state.coordinator
    await websocket.accept()
    connection_id = new_id()
    connection = WebSocketConnection(
        websocket,
        asyncio.get_running_loop(),
        on_dead=lambda: coord.registry.unregister(connection_id),
        send_timeout=coord.settings.ws_send_timeout_s,
        max_pending=coord.settings.ws_max_pending,
    )
    coord.registry.register(connection_id, connection)
    writer = asyncio.create_task(connection.pump())
    try:
        while True:
            raw = await websocket.receive_text()
            await handle_message(coord, connection_id, raw)
    except WebSocketDisconnect:
        pass
    except RuntimeError:
        # socket closed by our own writer after a failed push
        if not connection.closed:
            raise
    finally:
        coord.registry.unregister(connection_id)
        connection.close()
        writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await writer
