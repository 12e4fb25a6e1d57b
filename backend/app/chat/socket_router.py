"""WebSocket endpoint for the realtime presence and messaging core.

One task per connection reads JSON frames and hands each to
``RealtimeServer.dispatch`` in arrival order, so a frame is fully handled
before the next frame from the same connection is read. Frames from other
connections interleave at await points.

Protocol Flow:
    1. Client connects to /ws (no token in the URL)
    2. Client sends: {type: "authenticate", token}
       -> Server sends: {type: "authenticated", success, user}
    3. Client sends: {type: "join_room", roomId}
       -> Joiner gets: {type: "room_joined", room, activeUsers}
       -> Others get: {type: "user_joined", roomId, user, message}
    4. Client sends: {type: "send_message", roomId, content, ...}
       -> Room (or whisper pair) gets: {type: "new_message", ...message}
       -> Sender gets: {type: "message_sent", success, messageId}
    5. On disconnect -> remaining occupants get: {type: "user_left", ...}
"""
import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from .manager import ConnectionState
from .realtime import RealtimeServer

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def realtime_endpoint(websocket: WebSocket) -> None:
    """Serve one realtime session until the client disconnects or is replaced."""
    server: RealtimeServer = websocket.app.state.services.realtime
    await websocket.accept()
    session = server.open_session(websocket)

    try:
        while session.state is not ConnectionState.DISCONNECTED:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                await server.presence.send(
                    session, {"type": "error", "message": "Invalid message format"}
                )
                continue

            if not isinstance(frame, dict):
                await server.presence.send(
                    session, {"type": "error", "message": "Invalid message format"}
                )
                continue

            await server.dispatch(session, frame)
    except WebSocketDisconnect:
        logger.info(f"[WS] Client disconnected: session={session.id}")
    finally:
        # Teardown must finish even if this task is being cancelled
        await asyncio.shield(server.disconnect(session))
