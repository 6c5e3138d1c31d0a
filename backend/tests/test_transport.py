from __future__ import annotations
import asyncio

from rescuenet.dispatcher import BroadcastDispatcher
from rescuenet.registry import ConnectionRegistry
from rescuenet.schemas import Report
from rescuenet.transport import WebSocketConnection


class StubSocket:
    def __init__(self, fail: bool = False, delay: float = 0.0) -> None:
        self.fail = fail
        self.delay = delay
        self.sent = []
        self.close_code = None

    async def send_json(self, message):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("connection reset by peer")
        self.sent.append(message)

    async def close(self, code: int = 1000):
        self.close_code = code


def _report() -> Report:
    return Report(id="r-1", short_code="AB12", lat=6.9, lng=79.8, timestamp=1, last_update=1)


def _wire(socket, **kwargs):
    registry = ConnectionRegistry()
    connection = WebSocketConnection(
        socket, asyncio.get_running_loop(), on_dead=lambda: registry.unregister("c1"), **kwargs
    )
    registry.register("c1", connection)
    registry.identify_as_rescuer("c1", "r-a")
    return registry, BroadcastDispatcher(registry), connection


def test_messages_are_sent_in_order():
    async def scenario():
        socket = StubSocket()
        registry, dispatcher, connection = _wire(socket)
        writer = asyncio.create_task(connection.pump())
        dispatcher.report_created(_report())
        dispatcher.report_updated(_report())
        await asyncio.sleep(0.05)
        connection.close()
        await asyncio.wait_for(writer, timeout=1)
        return registry, socket

    registry, socket = asyncio.run(scenario())
    assert [m["event"] for m in socket.sent] == ["report:new", "report:update"]
    assert registry.get("c1") is not None
    assert socket.close_code is None


def _evicted_by_send(socket, **kwargs):
    async def scenario():
        registry, dispatcher, connection = _wire(socket, **kwargs)
        writer = asyncio.create_task(connection.pump())
        assert dispatcher.report_created(_report()) == 1
        await asyncio.wait_for(writer, timeout=2)
        await asyncio.wait_for(connection._closer, timeout=1)
        return registry, dispatcher, connection

    return asyncio.run(scenario())


def test_failed_send_evicts_and_closes():
    socket = StubSocket(fail=True)
    registry, dispatcher, connection = _evicted_by_send(socket)
    assert connection.closed
    assert registry.get("c1") is None
    assert socket.close_code == 1011
    assert dispatcher.report_created(_report()) == 0


def test_slow_send_evicts_and_closes():
    socket = StubSocket(delay=1.0)
    registry, _, connection = _evicted_by_send(socket, send_timeout=0.05)
    assert connection.closed
    assert registry.get("c1") is None
    assert socket.close_code == 1011
    assert socket.sent == []


def test_outbox_overflow_evicts():
    async def scenario():
        socket = StubSocket()
        registry, dispatcher, connection = _wire(socket, max_pending=2)
        for _ in range(3):
            dispatcher.report_created(_report())
        await asyncio.sleep(0)
        await asyncio.wait_for(connection._closer, timeout=1)
        return registry, socket, connection

    registry, socket, connection = asyncio.run(scenario())
    assert connection.closed
    assert registry.get("c1") is None
    assert socket.close_code == 1011
    assert connection.deliver({"event": "late"}) is False
