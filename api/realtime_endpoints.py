"""
Realtime WebSocket Endpoint.

`/ws?token=<jwt>` is the push channel. After the token is verified the
connection is registered with the `PresenceTracker`, which marks the user
online and broadcasts `user-status-update`. From then on the server pushes
`{"type": <event>, "data": <payload>}` frames (`user-status-update`,
`new-chat`, `new-message`, `post-accepted`). The client may send
`{"type": "ping"}` and is answered with a `pong` frame. Closing the socket
marks the user offline unless a newer connection has replaced this one; a
replaced connection is closed with code 4000. Frames that are not JSON
text close the socket with 1003.
"""

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from api.dependencies import get_presence_tracker
from core.auth import get_jwt_manager
from core.exceptions import AuthenticationError
from core.logging_config import get_logger, set_user_id
from services.presence_service import ConnectionHandle, PresenceTracker

logger = get_logger(__name__)
websocket_router = APIRouter(tags=["WebSocket Communication"])

POLICY_VIOLATION = 1008
UNSUPPORTED_DATA = 1003


@websocket_router.websocket("/ws")
async def realtime_channel(
    websocket: WebSocket,
    token: str = Query(""),
    tracker: PresenceTracker = Depends(get_presence_tracker),
):
    """Push channel for one authenticated user"""
    try:
        user = get_jwt_manager().authenticate(token)
    except AuthenticationError as e:
        logger.warning(f"WebSocket authentication failed: {e.message}")
        await websocket.close(code=POLICY_VIOLATION, reason="Invalid token")
        return

    set_user_id(user.id)
    await websocket.accept()
    handle = ConnectionHandle(websocket)
    await handle.send("connected", {"userId": user.id})

    if not await tracker.connect(user.id, handle):
        await websocket.close(code=POLICY_VIOLATION, reason="Invalid user")
        return

    try:
        # a newer connection of the same user closes this one
        while websocket.application_state == WebSocketState.CONNECTED:
            message = await websocket.receive_json()
            if isinstance(message, dict) and message.get("type") == "ping":
                await handle.send("pong", {})
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for user {user.id}")
    except (ValueError, KeyError) as e:
        # KeyError: binary frame
        logger.warning(f"Malformed frame from user {user.id}: {e}")
        await websocket.close(code=UNSUPPORTED_DATA)
    finally:
        await tracker.disconnect(handle)
