from __future__ import annotations
import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)

_CLOSE = object()


class WebSocketConnection:
    """Connection-scoped writer.

    ``deliver`` may be called from any thread; messages go into a bounded
    outbox that a single task drains in order. A full outbox or a failed or
    slow send marks the connection dead and calls ``on_dead`` once.
    """

    def __init__(
        self,
        websocket: WebSocket,
        loop: asyncio.AbstractEventLoop,
        on_dead: Callable[[], Any],
        send_timeout: float = 5.0,
        max_pending: int = 256,
    ):
        self.websocket = websocket
        self.closed = False
        self._loop = loop
        self._on_dead = on_dead
        self._send_timeout = send_timeout
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._closer: Optional[asyncio.Task] = None

    def deliver(self, message: Dict[str, Any]) -> bool:
        if self.closed:
            return False
        try:
            self._loop.call_soon_threadsafe(self._enqueue, message)
        except RuntimeError:
            # loop already closed
            self.closed = True
            return False
        return True

    def _enqueue(self, message: Any) -> None:
        if self.closed:
            return
        try:
            self._outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Outbox full, dropping slow connection")
            self._fail()

    def _fail(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._on_dead()
        finally:
            self._closer = self._loop.create_task(self._shutdown())

    async def _shutdown(self) -> None:
        try:
            await self.websocket.close(code=1011)
        except Exception as e:
            logger.debug("Close after failure: %s" % e)

    async def pump(self) -> None:
        try:
            while True:
                message = await self._outbox.get()
                if message is _CLOSE or self.closed:
                    break
                await asyncio.wait_for(self.websocket.send_json(message), timeout=self._send_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Push failed: %s" % e)
            self._fail()

    def close(self) -> None:
        """Stop the writer. Must run on the connection's loop."""
        self.closed = True
        try:
            self._outbox.put_nowait(_CLOSE)
        except asyncio.QueueFull:
            pass
