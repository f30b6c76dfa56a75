from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed

from .sessions import session_status

log = logging.getLogger("broadcast")


def _request_path(ws: Any) -> str:
    req = getattr(ws, "request", None)
    if req is not None and getattr(req, "path", None):
        return req.path
    return getattr(ws, "path", "/") or "/"


class Broadcaster:
    """Websocket fan-out of scanner events to dashboard clients."""

    def __init__(
        self,
        *,
        enabled: bool = False,
        host: str = "0.0.0.0",
        port: int = 8765,
        path: str = "/ws",
        clock_ms: Optional[Callable[[], int]] = None,
    ):
        self.enabled = bool(enabled)
        self.host = host
        self.port = int(port)
        self.path = path
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))
        self._clients: Set[Any] = set()
        self._server = None

    @staticmethod
    def encode(msg_type: str, data: Any) -> str:
        return json.dumps({"type": msg_type, "data": data}, separators=(",", ":"), default=str)

    async def start(self) -> None:
        if not self.enabled or self._server is not None:
            return
        self._server = await websockets.serve(self._handler, self.host, self.port)
        log.info("ws_listening host=%s port=%d path=%s", self.host, self.port, self.path)

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        self._clients.clear()

    async def _handler(self, ws: Any) -> None:
        if self.path and _request_path(ws) != self.path:
            await ws.close(code=1008, reason="unknown path")
            return
        self._clients.add(ws)
        log.info("ws_client_connected clients=%d", len(self._clients))
        try:
            await ws.send(self.encode("session_status", session_status(self._clock_ms())))
            async for _ in ws:
                pass  # clients are listen-only
        except ConnectionClosed:
            pass
        finally:
            self._clients.discard(ws)
            log.info("ws_client_disconnected clients=%d", len(self._clients))

    async def publish(self, msg_type: str, data: Dict[str, Any]) -> int:
        """Send to every connected client. Returns the number of successful sends."""
        if not self._clients:
            return 0
        payload = self.encode(msg_type, data)
        sent = 0
        for ws in list(self._clients):
            try:
                await ws.send(payload)
                sent += 1
            except Exception as e:
                log.warning("ws_send_failed type=%s err=%s", msg_type, e)
                self._clients.discard(ws)
        return sent

    @property
    def client_count(self) -> int:
        return len(self._clients)
