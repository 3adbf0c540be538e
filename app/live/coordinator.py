"""
Live session coordinator.

Owns the presence registry for live classes and study groups and is the
rendezvous point for WebRTC signaling between a class host and its
participants. It also persists chat sent over the socket before fanning it
back out.

Host stream lifecycle per class:

    NoHost --host connects--> HostAnnounced --host-stream-started--> StreamActive
    StreamActive --host-stream-stopped--> HostAnnounced
    StreamActive --leave_class / disconnect--> NoHost (+ class_ended)
    HostAnnounced --last host tab leaves--> NoHost (+ class_ended)

Registry mutations happen before the first await of every handler, so other
events never observe a half-applied transition. Anything read from the
registry before an await is re-read afterwards.
"""

import asyncio
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

from app.auth.auth_utils import is_platform_admin
from app.classes.models import MessageKind
from app.live import events
from app.live.errors import LiveSessionError, PayloadValidationError
from app.live.registry import Connection, ConnectionRegistry, Role, SessionKind, room_key
from app.system.logger import get_logger

logger = get_logger(__name__)

REASON_LEAVE = "leave"
REASON_DISCONNECT = "disconnect"

Handler = Callable[[Connection, str, Any], Awaitable[None]]


class SessionCoordinator:
    def __init__(
        self,
        store,
        audio_storage,
        registry: Optional[ConnectionRegistry] = None,
        host_grace_seconds: float = 0.0,
    ):
        self.store = store
        self.audio_storage = audio_storage
        self.registry = registry or ConnectionRegistry()
        self.host_grace_seconds = host_grace_seconds
        self._pending_class_end: Dict[str, asyncio.Task] = {}

        self._handlers: Dict[str, Handler] = {
            events.CHECK_HOST_STATUS: self._on_check_host_status,
            events.HOST_STREAM_STARTED: self._on_host_stream_started,
            events.HOST_STREAM_STOPPED: self._on_host_stream_stopped,
            events.LEAVE_CLASS: self._on_leave_class,
            events.LEAVE_STUDY_GROUP: self._on_leave_study_group,
            events.REQUEST_OFFER: self._on_request_offer,
            events.OFFER: self._on_offer,
            events.ANSWER: self._relay_signal,
            events.ICE_CANDIDATE: self._relay_signal,
            events.SEND_MESSAGE: self._on_send_message,
            events.SEND_AUDIO: self._on_send_audio,
            events.STUDY_GROUP_MESSAGE: self._on_study_group_message,
            events.HOST_AUDIO_STATE: self._on_host_media_state,
            events.HOST_VIDEO_STATE: self._on_host_media_state,
        }

    # ==================== CONNECTION LIFECYCLE ====================

    async def resolve_role(self, principal: dict, class_id: str, wants_host: bool) -> Role:
        """
        Host privileges come from the class's host of record (or a platform
        admin token), never from the client's isAdmin/isHost flag alone.
        """
        if not wants_host:
            return Role.PARTICIPANT
        if is_platform_admin(principal):
            return Role.HOST

        try:
            class_doc = await self.store.get_class(class_id)
        except LiveSessionError:
            logger.exception("Host check failed for class %s", class_id)
            return Role.PARTICIPANT

        if class_doc and class_doc.get("host_id") == principal.get("sub"):
            return Role.HOST

        logger.warning(
            "User %s asked to host class %s but is not its host, joining as participant",
            principal.get("sub"), class_id,
        )
        return Role.PARTICIPANT

    async def connect(self, channel, handshake: events.Handshake, principal: dict) -> Connection:
        user_id = principal["sub"]

        if handshake.study_group_id:
            kind, session_id, role = SessionKind.STUDY_GROUP, handshake.study_group_id, Role.PARTICIPANT
        elif handshake.class_id:
            kind, session_id = SessionKind.CLASS, handshake.class_id
            role = await self.resolve_role(principal, session_id, handshake.wants_host)
        else:
            raise PayloadValidationError("Handshake needs classId or studyGroupId")

        connection = Connection(
            connection_id=uuid.uuid4().hex,
            user_id=user_id,
            session_id=session_id,
            kind=kind,
            role=role,
            channel=channel,
        )
        self.registry.attach(connection)
        logger.info("%s %s joined %s as %s", user_id, connection.connection_id, connection.room, role.value)

        if kind == SessionKind.STUDY_GROUP:
            await self.broadcast(connection.room, events.USER_JOINED_STUDY_GROUP, {
                "userId": user_id,
                "socketId": connection.connection_id,
            }, exclude=connection.connection_id)
        elif connection.is_host and self._cancel_pending_class_end(connection.room):
            logger.info("Host rejoined %s within grace period", connection.room)

        return connection

    async def disconnect(self, connection_id: str, reason: str = REASON_DISCONNECT):
        """Detach a connection and tell the rest of its session. Unknown ids are ignored."""
        connection = self.registry.get(connection_id)
        if connection is None:
            return

        room = connection.room
        was_streaming = self.registry.active_host(room) is connection
        self.registry.detach(connection_id)
        logger.info("%s %s left %s (%s)", connection.user_id, connection_id, room, reason)

        if connection.kind == SessionKind.STUDY_GROUP:
            await self.broadcast(room, events.USER_LEFT_STUDY_GROUP, {
                "userId": connection.user_id,
                "socketId": connection_id,
            })
            return

        # The last host tab leaving ends the class, streaming or not
        host_gone = connection.is_host and not self.registry.host_connections(room)

        if was_streaming:
            logger.info("Host stream for class %s ended by %s", connection.session_id, reason)
            await self.broadcast(room, events.HOST_STREAM_ENDED, {"classId": connection.session_id})

        if was_streaming or host_gone:
            if reason == REASON_DISCONNECT and self.host_grace_seconds > 0:
                self._schedule_class_end(connection)
            else:
                await self._end_class(connection.session_id, reason)

        await self.broadcast(room, events.USER_LEFT, {
            "userId": connection.user_id,
            "isHost": connection.is_host,
        })

    async def close(self):
        for task in list(self._pending_class_end.values()):
            task.cancel()
        self._pending_class_end.clear()

    async def _end_class(self, class_id: str, reason: str):
        message = "Host has ended the class" if reason == REASON_LEAVE else "Host has disconnected"
        await self.broadcast(room_key(SessionKind.CLASS, class_id), events.CLASS_ENDED, {
            "classId": class_id,
            "message": message,
        })

    def _schedule_class_end(self, connection: Connection):
        self._cancel_pending_class_end(connection.room)
        task = asyncio.create_task(self._end_class_after_grace(connection.room, connection.session_id))
        self._pending_class_end[connection.room] = task

    def _cancel_pending_class_end(self, room: str) -> bool:
        task = self._pending_class_end.pop(room, None)
        if task is None:
            return False
        task.cancel()
        return True

    async def _end_class_after_grace(self, room: str, class_id: str):
        try:
            await asyncio.sleep(self.host_grace_seconds)
            if self.registry.host_connections(room):
                return
            await self._end_class(class_id, REASON_DISCONNECT)
        finally:
            if self._pending_class_end.get(room) is asyncio.current_task():
                del self._pending_class_end[room]

    # ==================== DISPATCH ====================

    async def handle(self, connection_id: str, event: str, data: Any = None):
        """
        Run one inbound socket event. Failures are reported to the sender as an
        `error` event and never propagate to the receive loop.
        """
        connection = self.registry.get(connection_id)
        if connection is None:
            logger.debug("Dropping %s from detached connection %s", event, connection_id)
            return

        handler = self._handlers.get(event)
        if handler is None:
            logger.warning("Unknown event %r from %s", event, connection_id)
            return

        try:
            await handler(connection, event, data)
        except LiveSessionError as e:
            logger.warning("%s from %s rejected: %s", event, connection_id, e)
            await self.send(connection, events.ERROR, {"event": event, "message": e.message})
        except Exception:
            logger.exception("Error handling %s from %s", event, connection_id)
            await self.send(connection, events.ERROR, {"event": event, "message": "Failed to process event"})

    async def send(self, connection: Connection, event: str, data: Any = None):
        try:
            await connection.channel.send(event, data)
        except Exception:
            # The receive loop notices the dead socket and detaches it
            logger.debug("Could not deliver %s to %s", event, connection.connection_id)

    async def broadcast(self, room: str, event: str, data: Any = None, exclude: Optional[str] = None):
        targets = self.registry.members_of(room, exclude=exclude)
        if targets:
            await asyncio.gather(*[self.send(c, event, data) for c in targets])

    def live_status(self, class_id: str) -> dict:
        room = room_key(SessionKind.CLASS, class_id)
        return {
            "classId": class_id,
            "hostState": self.registry.host_state(room).value,
            "isHostActive": self.registry.active_host(room) is not None,
            "connected": len(self.registry.members_of(room)),
        }

    # ==================== HOST STREAM ====================

    def _own_class_room(self, connection: Connection, event: str, class_id: Optional[str]) -> Optional[str]:
        """The sender's class room, or None when the event points somewhere else"""
        if connection.kind != SessionKind.CLASS:
            logger.warning("%s from non-class connection %s ignored", event, connection.connection_id)
            return None
        if class_id and class_id != connection.session_id:
            logger.warning(
                "%s for class %s from connection bound to %s ignored",
                event, class_id, connection.session_id,
            )
            return None
        return connection.room

    async def _on_check_host_status(self, connection: Connection, event: str, data: Any):
        payload = events.parse_payload(events.ClassRef, event, data)
        room = self._own_class_room(connection, event, payload.class_id)
        if room is None:
            return

        host = self.registry.active_host(room)
        logger.debug("Host status check for class %s: %s", connection.session_id, host is not None)
        await self.send(connection, events.HOST_STATUS, {
            "classId": connection.session_id,
            "isHostActive": host is not None,
        })

        if host is not None and host is not connection:
            await self.send(host, events.OFFER_REQUESTED, {
                "classId": connection.session_id,
                "requesterId": connection.connection_id,
                "userId": connection.user_id,
            })

    async def _on_host_stream_started(self, connection: Connection, event: str, data: Any):
        payload = events.parse_payload(events.ClassRef, event, data)
        room = self._own_class_room(connection, event, payload.class_id)
        if room is None:
            return
        if not connection.is_host:
            logger.warning("Participant %s tried to start the host stream", connection.connection_id)
            return

        self.registry.activate_host_stream(room, connection.connection_id)
        self._cancel_pending_class_end(room)
        logger.info("Host stream started for class %s", connection.session_id)
        await self.broadcast(room, events.HOST_STREAM_AVAILABLE, {"classId": connection.session_id},
                             exclude=connection.connection_id)

    async def _on_host_stream_stopped(self, connection: Connection, event: str, data: Any):
        payload = events.parse_payload(events.ClassRef, event, data)
        room = self._own_class_room(connection, event, payload.class_id)
        if room is None or self.registry.active_host(room) is not connection:
            return

        self.registry.clear_host_stream(room)
        logger.info("Host stream stopped for class %s", connection.session_id)
        await self.broadcast(room, events.HOST_STREAM_ENDED, {"classId": connection.session_id},
                             exclude=connection.connection_id)

    async def _on_host_media_state(self, connection: Connection, event: str, data: Any):
        payload = events.parse_payload(events.MediaState, event, data)
        room = self._own_class_room(connection, event, payload.class_id)
        if room is None or not connection.is_host:
            return
        await self.broadcast(room, event, {"isEnabled": payload.is_enabled}, exclude=connection.connection_id)

    # ==================== LEAVING ====================

    async def _on_leave_class(self, connection: Connection, event: str, data: Any):
        payload = events.parse_payload(events.LeaveClass, event, data)
        if self._own_class_room(connection, event, payload.class_id) is None:
            return
        await self.disconnect(connection.connection_id, reason=REASON_LEAVE)

    async def _on_leave_study_group(self, connection: Connection, event: str, data: Any):
        payload = events.parse_payload(events.LeaveStudyGroup, event, data)
        if connection.kind != SessionKind.STUDY_GROUP:
            return
        if payload.study_group_id and payload.study_group_id != connection.session_id:
            logger.warning("%s for study group %s from %s ignored", event, payload.study_group_id, connection.connection_id)
            return
        await self.disconnect(connection.connection_id, reason=REASON_LEAVE)

    # ==================== SIGNALING ====================

    async def _on_request_offer(self, connection: Connection, event: str, data: Any):
        payload = events.parse_payload(events.ClassRef, event, data)
        room = self._own_class_room(connection, event, payload.class_id)
        if room is None:
            return

        host = self.registry.active_host(room)
        if host is None:
            hosts = self.registry.host_connections(room)
            host = hosts[0] if hosts else None
        if host is None or host is connection:
            return

        await self.send(host, events.OFFER_REQUESTED, {
            "classId": connection.session_id,
            "requesterId": connection.connection_id,
            "userId": connection.user_id,
        })

    async def _on_offer(self, connection: Connection, event: str, data: Any):
        if not connection.is_host:
            logger.warning("Offer from non-host connection %s dropped", connection.connection_id)
            return
        await self._relay_signal(connection, event, data)

    async def _relay_signal(self, connection: Connection, event: str, data: Any):
        """Forward an opaque offer/answer/ICE payload to the rest of the sender's session"""
        class_id = events.signal_class_id(data)
        if class_id and class_id != connection.session_id:
            logger.warning(
                "%s for %s from connection bound to %s dropped",
                event, class_id, connection.session_id,
            )
            return

        logger.debug("Relaying %s in %s from %s", event, connection.room, connection.connection_id)
        await self.broadcast(connection.room, event, data, exclude=connection.connection_id)

    # ==================== CHAT ====================

    def _chat_class_id(self, connection: Connection, event: str, class_id: Optional[str]) -> str:
        if connection.kind != SessionKind.CLASS:
            raise PayloadValidationError("Chat messages need a class connection", event=event)
        if class_id and class_id != connection.session_id:
            raise PayloadValidationError("classId does not match this connection", event=event)
        return connection.session_id

    async def _deliver_chat(self, connection: Connection, message: dict):
        # Saved first, so anyone who sees the broadcast can also fetch it
        await self.broadcast(connection.room, events.RECEIVE_MESSAGE, message, exclude=connection.connection_id)
        await self.send(connection, events.RECEIVE_MESSAGE, message)

    async def _on_send_message(self, connection: Connection, event: str, data: Any):
        payload = events.parse_payload(events.ChatText, event, data)
        class_id = self._chat_class_id(connection, event, payload.class_id)

        message = await self.store.save_message(
            class_id, payload.sender_id, payload.sender_name, payload.message, MessageKind.TEXT,
        )
        logger.debug("Saved message %s in class %s", message["id"], class_id)
        await self._deliver_chat(connection, message)

    async def _on_send_audio(self, connection: Connection, event: str, data: Any):
        payload = events.parse_payload(events.ChatAudio, event, data)
        class_id = self._chat_class_id(connection, event, payload.class_id)

        audio_url = await self.audio_storage.save(payload.content, payload.sender_id)
        try:
            message = await self.store.save_message(
                class_id, payload.sender_id, payload.sender_name, audio_url, MessageKind.AUDIO,
            )
        except LiveSessionError:
            await self.audio_storage.discard(audio_url)
            raise
        logger.debug("Saved audio message %s in class %s", message["id"], class_id)
        await self._deliver_chat(connection, message)

    async def _on_study_group_message(self, connection: Connection, event: str, data: Any):
        payload = events.parse_payload(events.StudyGroupChat, event, data)
        if connection.kind != SessionKind.STUDY_GROUP:
            raise PayloadValidationError("Study group messages need a study group connection", event=event)
        if payload.study_group_id and payload.study_group_id != connection.session_id:
            raise PayloadValidationError("studyGroupId does not match this connection", event=event)

        message = await self.store.save_study_group_message(
            connection.session_id, payload.sender, payload.content,
        )
        await self.publish_study_group_message(connection.session_id, message)

    async def publish_study_group_message(self, study_group_id: str, message: dict):
        """Push an already saved study group message to everyone connected, sender included"""
        await self.broadcast(room_key(SessionKind.STUDY_GROUP, study_group_id), events.STUDY_GROUP_MESSAGE, message)
