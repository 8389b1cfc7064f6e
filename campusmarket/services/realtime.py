"""
In-process realtime dispatcher.

Keeps the open WebSocket connections per user and pushes JSON events to
them. Pushing is fire-and-forget: it never raises and never blocks the
caller, whether the caller runs on the event loop or in the threadpool
that serves sync endpoints.

Usage:
    from campusmarket.services.realtime import realtime

    realtime.send_to_user(user_id, "newOffer", {"offerId": "..."})
"""
import asyncio
import logging
import threading
from collections import defaultdict
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)


class RealtimeDispatcher:
    """Registry of user_id -> open sockets."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._initialized = True
        self._connections: Dict[str, Set[WebSocket]] = defaultdict(set)
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        # Strong refs to in-flight deliveries; the loop only keeps weak ones
        self._tasks: Set[asyncio.Task] = set()

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        """Accept and register a socket for the user."""
        self._loop = asyncio.get_running_loop()
        with self._lock:
            self._connections[str(user_id)].add(websocket)
        await websocket.accept()
        logger.info(f"Realtime connection opened for user {user_id}")

    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        with self._lock:
            sockets = self._connections.get(str(user_id))
            if sockets is None:
                return
            sockets.discard(websocket)
            if not sockets:
                del self._connections[str(user_id)]
        logger.info(f"Realtime connection closed for user {user_id}")

    def send_to_user(self, user_id, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        """
        Push an event to every socket of the user.

        Args:
            user_id: Recipient
            event: Event name (newOffer, orderPaid, ...)
            payload: JSON-serializable data
        """
        try:
            with self._lock:
                sockets = list(self._connections.get(str(user_id), ()))
            if not sockets or self._loop is None or self._loop.is_closed():
                return

            message = {"event": event, "data": jsonable_encoder(payload or {})}
            coro = self._deliver(str(user_id), sockets, message)

            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None

            if running is self._loop:
                task = running.create_task(coro)
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
            else:
                asyncio.run_coroutine_threadsafe(coro, self._loop)
        except Exception as e:
            logger.warning(f"Realtime push '{event}' to user {user_id} failed: {e}")

    async def _deliver(self, user_id: str, sockets, message: Dict[str, Any]) -> None:
        for websocket in sockets:
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.warning(f"Dropping realtime socket for user {user_id}: {e}")
                self.disconnect(user_id, websocket)


# Singleton instance
realtime = RealtimeDispatcher()
