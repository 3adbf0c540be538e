import json

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError

from app.auth.auth_utils import TokenError, extract_ws_token, verify_lum_token_ws
from app.classes.dependencies import get_coordinator
from app.live import events
from app.live.coordinator import SessionCoordinator
from app.live.errors import LiveSessionError
from app.system.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/ws", tags=["Live Sessions"])


class WebSocketChannel:
    """Frames every outbound event as {"event": ..., "data": ...}"""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send(self, event: str, data=None):
        await self.websocket.send_json({"event": event, "data": jsonable_encoder(data)})


def parse_frame(raw: str):
    try:
        frame = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        return None
    return frame


@router.websocket("/live")
async def live_session(websocket: WebSocket, coordinator: SessionCoordinator = Depends(get_coordinator)):
    # 🔐 Token from header or ?token=
    try:
        principal = verify_lum_token_ws(extract_ws_token(websocket))
    except TokenError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        handshake = events.Handshake.model_validate(dict(websocket.query_params))
    except ValidationError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    # Server-truth identity, a mismatching userId is rejected
    if handshake.user_id and handshake.user_id != principal["sub"]:
        logger.warning("Handshake userId %s does not match token subject", handshake.user_id)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    if not handshake.class_id and not handshake.study_group_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    channel = WebSocketChannel(websocket)

    try:
        connection = await coordinator.connect(channel, handshake, principal)
    except LiveSessionError as e:
        await channel.send(events.ERROR, {"message": e.message})
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))

            raw = message.get("text")
            if raw is None:
                await channel.send(events.ERROR, {"message": "Binary frames are not supported"})
                continue

            frame = parse_frame(raw)
            if frame is None:
                await channel.send(events.ERROR, {"message": "Frames must be JSON objects with an event name"})
                continue
            await coordinator.handle(connection.connection_id, frame["event"], frame.get("data"))
    except WebSocketDisconnect:
        pass
    finally:
        await coordinator.disconnect(connection.connection_id)
