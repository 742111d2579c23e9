"""
Realtime Presence Tracking Service.

This module provides the `PresenceTracker`, the single owner of the mapping
between users and their live websocket connections, and `ConnectionHandle`,
the wrapper the tracker stores for each connection.

Key Components:
- `ConnectionHandle`: wraps one accepted websocket. It has a stable
  `handle_id` and a `send(event, payload)` coroutine that writes a
  `{"type": event, "data": payload}` frame.
- `PresenceTracker`: keeps `user_id -> handle` plus a reverse
  `handle_id -> user_id` index so a disconnect is resolved in O(1). Both maps
  are only mutated under one `asyncio.Lock`. A per-user lock additionally
  serializes each connect or disconnect with its status write and
  notification, so the persisted flag and the last broadcast always match
  the tracked mapping.

Behaviour:
- A user has at most one tracked handle. Connecting again replaces and
  closes the old handle silently: no offline event for the replaced handle,
  no second online event. Disconnecting the replaced handle later is a no-op.
- On a real online/offline transition the tracker persists `isOnline` through
  the `status_store` callable and notifies every subscribed listener. A failed
  write is logged; the mapping and the notification still happen.
- The state lives in process memory and starts empty, so startup resets every
  persisted `isOnline` flag (see `UserService.mark_all_offline`).
"""

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from fastapi import WebSocket, WebSocketDisconnect

from core.validation import InputValidator

logger = logging.getLogger(__name__)

PresenceListener = Callable[[str, bool], Awaitable[None]]
StatusStore = Callable[[str, bool], Awaitable[Any]]

# Close code sent to a connection taken over by a newer one
REPLACED_CONNECTION = 4000


class ConnectionHandle:
    """One live websocket connection"""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.handle_id = uuid.uuid4().hex

    async def send(self, event: str, payload: Any):
        await self.websocket.send_json(
            {"type": event, "data": jsonable_encoder(payload)}
        )

    async def close(self, code: int = REPLACED_CONNECTION):
        try:
            await self.websocket.close(code=code)
        except (RuntimeError, WebSocketDisconnect) as e:
            # already closed by the client
            logger.debug(f"Close of {self.handle_id} skipped: {e}")

    def __repr__(self) -> str:
        return f"ConnectionHandle({self.handle_id})"


class PresenceTracker:
    """Tracks which users are online and through which connection"""

    def __init__(self, status_store: Optional[StatusStore] = None):
        self.status_store = status_store
        self._lock = asyncio.Lock()
        self._user_locks: Dict[str, asyncio.Lock] = {}
        self._handles: Dict[str, ConnectionHandle] = {}
        self._owners: Dict[str, str] = {}
        self._listeners: List[PresenceListener] = []

    def subscribe(self, listener: PresenceListener):
        """Register a coroutine called with (user_id, is_online) on every change"""
        self._listeners.append(listener)

    async def connect(self, user_id: str, handle: ConnectionHandle) -> bool:
        """
        Track `handle` as the connection of `user_id`.

        Returns False without touching any state when `user_id` is not a
        well-formed identifier. A replaced handle is closed.
        """
        if not InputValidator.is_identifier(user_id):
            logger.warning(f"Ignoring connect for malformed user id {user_id!r}")
            return False

        async with self._user_lock(user_id):
            async with self._lock:
                previous = self._handles.get(user_id)
                if previous is not None:
                    self._owners.pop(previous.handle_id, None)
                self._handles[user_id] = handle
                self._owners[handle.handle_id] = user_id

            if previous is not None:
                logger.info(
                    f"Replaced connection for user {user_id}",
                    extra={"user_id": user_id, "handle_id": handle.handle_id},
                )
                await previous.close()
                return True

            logger.info(f"User {user_id} connected", extra={"user_id": user_id})
            await self._persist(user_id, True)
            await self._publish(user_id, True)
        return True

    async def disconnect(self, handle: ConnectionHandle) -> Optional[str]:
        """Forget `handle`. Returns the user it belonged to, or None if untracked."""
        user_id = self._owners.get(handle.handle_id)
        if user_id is None:
            return None

        async with self._user_lock(user_id):
            async with self._lock:
                # replaced while waiting for the user lock
                if self._owners.pop(handle.handle_id, None) is None:
                    return None
                if self._handles.get(user_id) is handle:
                    del self._handles[user_id]

            logger.info(f"User {user_id} disconnected", extra={"user_id": user_id})
            await self._persist(user_id, False)
            await self._publish(user_id, False)
        return user_id

    def _user_lock(self, user_id: str) -> asyncio.Lock:
        return self._user_locks.setdefault(user_id, asyncio.Lock())

    def lookup(self, user_id: str) -> Optional[ConnectionHandle]:
        return self._handles.get(user_id)

    def connections(self) -> List[ConnectionHandle]:
        return list(self._handles.values())

    def online_user_ids(self) -> List[str]:
        return list(self._handles.keys())

    def is_online(self, user_id: str) -> bool:
        return user_id in self._handles

    def get_stats(self) -> Dict[str, int]:
        return {
            "online_users": len(self._handles),
            "listeners": len(self._listeners),
        }

    async def _persist(self, user_id: str, is_online: bool):
        if self.status_store is None:
            return
        try:
            await self.status_store(user_id, is_online)
        except Exception as e:
            logger.error(
                f"Failed to persist presence for user {user_id}: {e}",
                extra={"user_id": user_id, "is_online": is_online},
            )

    async def _publish(self, user_id: str, is_online: bool):
        for listener in list(self._listeners):
            try:
                await listener(user_id, is_online)
            except Exception as e:
                logger.error(f"Presence listener failed for user {user_id}: {e}")
