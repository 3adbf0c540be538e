from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set


class SessionKind(str, Enum):
    CLASS = "class"
    STUDY_GROUP = "study_group"


class Role(str, Enum):
    HOST = "host"
    PARTICIPANT = "participant"


class HostState(str, Enum):
    NO_HOST = "no_host"
    HOST_ANNOUNCED = "host_announced"
    STREAM_ACTIVE = "stream_active"


def room_key(kind: SessionKind, session_id: str) -> str:
    """Class ids and study group ids live in separate namespaces"""
    if kind == SessionKind.STUDY_GROUP:
        return f"study_group_{session_id}"
    return f"class_{session_id}"


@dataclass
class Connection:
    connection_id: str
    user_id: str
    session_id: str
    kind: SessionKind
    role: Role
    channel: Any  # anything with `async send(event, data)`

    @property
    def room(self) -> str:
        return room_key(self.kind, self.session_id)

    @property
    def is_host(self) -> bool:
        return self.role == Role.HOST


@dataclass
class SessionPresenceState:
    host_connection_id: Optional[str] = None
    host_stream_active: bool = False
    member_connection_ids: Set[str] = field(default_factory=set)


class ConnectionRegistry:
    """
    In-memory presence for every live socket in this process.

    Mutations never await, so each call is atomic with respect to other
    socket events on the same loop.
    """

    def __init__(self):
        self.connections: Dict[str, Connection] = {}
        self.sessions: Dict[str, SessionPresenceState] = {}

    def __len__(self) -> int:
        return len(self.connections)

    def get(self, connection_id: str) -> Optional[Connection]:
        return self.connections.get(connection_id)

    def presence(self, room: str) -> SessionPresenceState:
        """Unknown rooms read as empty"""
        return self.sessions.get(room) or SessionPresenceState()

    def attach(self, connection: Connection) -> None:
        if connection.connection_id in self.connections:
            raise ValueError(f"Connection {connection.connection_id} already attached")

        self.connections[connection.connection_id] = connection
        state = self.sessions.setdefault(connection.room, SessionPresenceState())
        state.member_connection_ids.add(connection.connection_id)

    def detach(self, connection_id: str) -> Optional[Connection]:
        """
        Drop a connection. Unknown ids return None, disconnect races are normal.
        If it was the active host stream, the stream state is cleared in the same step.
        """
        connection = self.connections.pop(connection_id, None)
        if connection is None:
            return None

        state = self.sessions.get(connection.room)
        if state is not None:
            state.member_connection_ids.discard(connection_id)
            if state.host_connection_id == connection_id:
                state.host_connection_id = None
                state.host_stream_active = False
            if not state.member_connection_ids:
                del self.sessions[connection.room]
        return connection

    def members_of(self, room: str, exclude: Optional[str] = None) -> List[Connection]:
        state = self.sessions.get(room)
        if state is None:
            return []
        return [
            self.connections[cid]
            for cid in list(state.member_connection_ids)
            if cid != exclude and cid in self.connections
        ]

    # ==================== HOST STREAM ====================

    def activate_host_stream(self, room: str, connection_id: str) -> None:
        connection = self.connections.get(connection_id)
        if connection is None or connection.room != room or not connection.is_host:
            raise ValueError(f"Connection {connection_id} cannot host {room}")

        state = self.sessions[room]
        state.host_connection_id = connection_id
        state.host_stream_active = True

    def clear_host_stream(self, room: str) -> bool:
        """Returns True when a stream was actually active"""
        state = self.sessions.get(room)
        if state is None or not state.host_stream_active:
            return False
        state.host_connection_id = None
        state.host_stream_active = False
        return True

    def active_host(self, room: str) -> Optional[Connection]:
        state = self.sessions.get(room)
        if state is None or not state.host_stream_active or state.host_connection_id is None:
            return None
        return self.connections.get(state.host_connection_id)

    def host_connections(self, room: str) -> List[Connection]:
        return [c for c in self.members_of(room) if c.is_host]

    def host_state(self, room: str) -> HostState:
        if self.active_host(room) is not None:
            return HostState.STREAM_ACTIVE
        if self.host_connections(room):
            return HostState.HOST_ANNOUNCED
        return HostState.NO_HOST
