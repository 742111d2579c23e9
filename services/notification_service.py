"""
Push Notification Dispatch.

`NotificationDispatcher` routes server-side events onto the websocket
connections known to the `PresenceTracker`. Delivery is best-effort: a user
without a connection simply misses the event, and a failed send is logged and
never reported to the caller that triggered it. There is no queue, no retry
and no ordering guarantee across events.

Services call the dispatcher only after their transaction has committed.
"""

import logging
from typing import Any

from services.presence_service import PresenceTracker

logger = logging.getLogger(__name__)

USER_STATUS_UPDATE = "user-status-update"
NEW_CHAT = "new-chat"
NEW_MESSAGE = "new-message"
POST_ACCEPTED = "post-accepted"


class NotificationDispatcher:
    """Fan-out of push events to connected users"""

    def __init__(self, tracker: PresenceTracker):
        self.tracker = tracker
        tracker.subscribe(self.on_presence_change)

    async def on_presence_change(self, user_id: str, is_online: bool):
        await self.broadcast(
            USER_STATUS_UPDATE, {"userId": user_id, "isOnline": is_online}
        )

    async def emit_to_user(self, user_id: str, event: str, payload: Any) -> bool:
        """Deliver one event to one user. Returns whether it was sent."""
        handle = self.tracker.lookup(user_id)
        if handle is None:
            logger.debug(f"User {user_id} offline, dropping {event}")
            return False

        try:
            await handle.send(event, payload)
            return True
        except Exception as e:
            logger.warning(
                f"Failed to deliver {event} to user {user_id}: {e}",
                extra={"user_id": user_id, "event": event},
            )
            return False

    async def broadcast(self, event: str, payload: Any) -> int:
        """Deliver one event to every connection. Returns the delivered count."""
        delivered = 0
        for handle in self.tracker.connections():
            try:
                await handle.send(event, payload)
                delivered += 1
            except Exception as e:
                logger.warning(
                    f"Failed to broadcast {event} to {handle.handle_id}: {e}",
                    extra={"event": event},
                )

        logger.debug(f"Broadcast {event} to {delivered} connection(s)")
        return delivered
