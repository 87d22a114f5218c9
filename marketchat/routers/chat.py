import logging
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from marketchat.core.config import settings
from marketchat.core.exceptions import ChatError, UnknownSubject
from marketchat.schemas.events import (
    JoinConversation,
    LeaveConversation,
    SendMessage,
    SendMessagePayload,
    message_error,
    parse_client_event,
)
from marketchat.services.chat_service import ChatService
from marketchat.services.identity_service import IdentityVerifier
from marketchat.utils.dependencies import get_identity_verifier, get_ws_chat_service, get_ws_connection_manager
from marketchat.utils.websocket_manager import Connection, ConnectionManager


logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])

# close codes for a rejected handshake
WS_CLOSE_UNAUTHENTICATED = 4401
WS_CLOSE_UNKNOWN_SUBJECT = 4404


def _handshake_token(websocket: WebSocket) -> Optional[str]:
    token = websocket.query_params.get("token")
    if token:
        return token
    authorization = websocket.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


@router.websocket("/ws")
async def chat_socket(
    websocket: WebSocket,
    verifier: IdentityVerifier = Depends(get_identity_verifier),
    service: ChatService = Depends(get_ws_chat_service),
    connections: ConnectionManager = Depends(get_ws_connection_manager),
):
    # the handshake must succeed before anything is accepted; failures just close
    try:
        user = await verifier.verify(_handshake_token(websocket))
    except UnknownSubject:
        await websocket.close(code=WS_CLOSE_UNKNOWN_SUBJECT)
        return
    except ChatError as exc:
        logger.info("Rejected live connection", extra={"reason": exc.error})
        await websocket.close(code=WS_CLOSE_UNAUTHENTICATED)
        return

    connection = await connections.connect(websocket, user)
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            # text and binary frames carry the same JSON
            raw = frame.get("text") or frame.get("bytes")
            if not raw:
                continue
            try:
                event = parse_client_event(raw)
            except ValidationError:
                logger.debug("Ignoring malformed frame", extra={"user_id": user.id})
                continue

            if isinstance(event, JoinConversation):
                await _join(connection, event.data, service, connections)
            elif isinstance(event, LeaveConversation):
                connections.leave(connection, event.data)
            elif isinstance(event, SendMessage):
                payload = event.data
                if not payload.conversation_id or not (payload.content or "").strip():
                    continue
                connections.spawn(connection, _send(connection, payload, service, connections))
    except WebSocketDisconnect as exc:
        logger.debug("Client closed socket", extra={"user_id": user.id, "code": exc.code})
    finally:
        connections.disconnect(connection)


async def _join(connection: Connection, room: Optional[str], service: ChatService, connections: ConnectionManager) -> None:
    if not room:
        return
    if settings.chat_strict_room_join and not await service.can_join(connection.user, room):
        logger.info("Refused room join", extra={"user_id": connection.user_id, "room": room})
        return
    connections.join(connection, room)


async def _send(connection: Connection, payload: SendMessagePayload, service: ChatService, connections: ConnectionManager) -> None:
    try:
        await service.send_message(connection.user, payload.conversation_id, payload.content)
    except ChatError as exc:
        await connections.send(connection, message_error(exc.live_message()))
    except Exception:
        logger.exception("Socket message error", extra={"user_id": connection.user_id})
        await connections.send(connection, message_error("Failed to send message"))
