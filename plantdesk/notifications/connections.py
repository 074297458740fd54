"""Registry of live websocket sessions keyed by user id."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

from starlette import status

from plantdesk.core.errors import DeliveryDegradedError

logger = logging.getLogger(__name__)


class RealtimeSocket(Protocol):
    async def accept(self) -> None:
        ...

    async def send_text(self, data: str) -> None:
        ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        ...


class ConnectionManager:
    """Track every open socket per user and push JSON messages to them.

    Created on application start-up and closed on shutdown; one instance per
    process, shared through ``app.state``.
    """

    def __init__(self) -> None:
        self._connections: dict[str, set[RealtimeSocket]] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    async def connect(self, websocket: RealtimeSocket, user_id: str) -> bool:
        """Accept and register a socket; returns False once the registry is closed."""

        await websocket.accept()
        async with self._lock:
            if self._closed:
                await websocket.close(code=status.WS_1001_GOING_AWAY, reason="Server shutting down")
                return False
            self._connections.setdefault(user_id, set()).add(websocket)
        logger.debug("Realtime session opened for %s", user_id)
        return True

    async def disconnect(self, websocket: RealtimeSocket, user_id: str) -> None:
        async with self._lock:
            self._discard(user_id, [websocket])

    def is_connected(self, user_id: str) -> bool:
        return bool(self._connections.get(user_id))

    def connection_count(self, user_id: str | None = None) -> int:
        if user_id is not None:
            return len(self._connections.get(user_id, ()))
        return sum(len(sockets) for sockets in self._connections.values())

    async def send_to_user(
        self, user_id: str, message: dict[str, Any], *, timeout: float | None = None
    ) -> int:
        """Send ``message`` to every socket of ``user_id``; return how many received it.

        Sockets that fail or exceed ``timeout`` are closed, dropped from the
        registry and reported through :class:`DeliveryDegradedError` once the
        remaining sockets were served.
        """

        async with self._lock:
            sockets = list(self._connections.get(user_id, ()))
        if not sockets:
            return 0

        data = json.dumps(message)
        failed: list[RealtimeSocket] = []
        timed_out: list[RealtimeSocket] = []
        for websocket in sockets:
            try:
                await asyncio.wait_for(websocket.send_text(data), timeout)
            except asyncio.TimeoutError:
                logger.debug("Realtime session of %s timed out after %ss", user_id, timeout)
                timed_out.append(websocket)
            except Exception as exc:
                logger.debug("Dropping realtime session of %s: %s", user_id, exc)
                failed.append(websocket)

        dead = failed + timed_out
        if not dead:
            return len(sockets)

        async with self._lock:
            self._discard(user_id, dead)
        for websocket in dead:
            try:
                await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
            except Exception as exc:
                logger.debug("Session of %s already closed: %s", user_id, exc)
        reason = f", {len(timed_out)} timed out after {timeout}s" if timed_out else ""
        raise DeliveryDegradedError(
            f"Realtime push reached {len(sockets) - len(dead)} of {len(sockets)} sessions for {user_id}{reason}",
            failed=len(failed),
            timed_out=len(timed_out),
        )

    async def close_all(self) -> None:
        """Close every session and refuse new ones."""

        async with self._lock:
            self._closed = True
            sockets = [
                (user_id, websocket)
                for user_id, user_sockets in self._connections.items()
                for websocket in user_sockets
            ]
            self._connections.clear()
        for user_id, websocket in sockets:
            try:
                await websocket.close(code=status.WS_1001_GOING_AWAY, reason="Server shutting down")
            except Exception as exc:
                logger.debug("Session of %s already closed: %s", user_id, exc)

    def _discard(self, user_id: str, sockets: list[RealtimeSocket]) -> None:
        user_sockets = self._connections.get(user_id)
        if user_sockets is None:
            return
        for websocket in sockets:
            user_sockets.discard(websocket)
        if not user_sockets:
            del self._connections[user_id]
