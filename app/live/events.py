"""
Socket event names and payload models.

Clients speak camelCase JSON; every payload is validated here before it reaches
anything that touches presence state or the database.
"""

from typing import Annotated, Any, Optional, Type, TypeVar

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from app.live.errors import PayloadValidationError

# ==================== CLIENT -> SERVER ====================

CHECK_HOST_STATUS = "check-host-status"
HOST_STREAM_STARTED = "host-stream-started"
HOST_STREAM_STOPPED = "host-stream-stopped"
LEAVE_CLASS = "leave_class"
LEAVE_STUDY_GROUP = "leave_study_group"
REQUEST_OFFER = "request-offer"
OFFER = "offer"
ANSWER = "answer"
ICE_CANDIDATE = "ice-candidate"
SEND_MESSAGE = "send_message"
SEND_AUDIO = "send_audio"
STUDY_GROUP_MESSAGE = "study_group_message"
HOST_AUDIO_STATE = "host_audio_state"
HOST_VIDEO_STATE = "host_video_state"

# ==================== SERVER -> CLIENT ====================

HOST_STATUS = "host-status"
HOST_STREAM_AVAILABLE = "host-stream-available"
HOST_STREAM_ENDED = "host-stream-ended"
OFFER_REQUESTED = "offer-requested"
CLASS_ENDED = "class_ended"
USER_LEFT = "user_left"
USER_JOINED_STUDY_GROUP = "user_joined_study_group"
USER_LEFT_STUDY_GROUP = "user_left_study_group"
RECEIVE_MESSAGE = "receive_message"
ERROR = "error"


class EventPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _require_text(v: str) -> str:
    if not v or not v.strip():
        raise ValueError("must not be empty")
    return v.strip()


RequiredText = Annotated[str, AfterValidator(_require_text)]


class ClassRef(EventPayload):
    class_id: Optional[str] = Field(None, alias="classId")


class LeaveClass(ClassRef):
    user_id: Optional[str] = Field(None, alias="userId")


class LeaveStudyGroup(EventPayload):
    study_group_id: Optional[str] = Field(None, alias="studyGroupId")


class ChatText(EventPayload):
    sender_id: RequiredText = Field(..., validation_alias=AliasChoices("userId", "senderId", "sender_id"))
    sender_name: RequiredText = Field(..., validation_alias=AliasChoices("senderName", "sender_name"))
    message: RequiredText
    class_id: Optional[str] = Field(None, alias="classId")


class ChatAudio(EventPayload):
    sender_id: RequiredText = Field(..., validation_alias=AliasChoices("senderId", "userId", "sender_id"))
    sender_name: RequiredText = Field(..., validation_alias=AliasChoices("senderName", "sender_name"))
    content: RequiredText
    class_id: Optional[str] = Field(None, alias="classId")


class StudyGroupChat(EventPayload):
    study_group_id: Optional[str] = Field(None, alias="studyGroupId")
    content: RequiredText
    sender: RequiredText


class MediaState(EventPayload):
    class_id: Optional[str] = Field(None, alias="classId")
    is_enabled: bool = Field(..., alias="isEnabled")


PayloadT = TypeVar("PayloadT", bound=EventPayload)


def parse_payload(model: Type[PayloadT], event: str, data: Any) -> PayloadT:
    """
    Validate an event payload.

    Some clients emit a bare class id string instead of {"classId": ...};
    that shape is accepted for ClassRef and its subclasses only.
    """
    if issubclass(model, ClassRef) and isinstance(data, str):
        data = {"classId": data}
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise PayloadValidationError("Payload must be an object", event=event)

    try:
        return model.model_validate(data)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise PayloadValidationError(
            f"Invalid payload for {event}",
            event=event,
            details={"fields": fields},
        ) from e


def signal_class_id(data: Any) -> Optional[str]:
    """Signaling payloads are opaque, only the routing key is read"""
    if isinstance(data, dict):
        class_id = data.get("classId")
        return str(class_id) if class_id is not None else None
    return None


class Handshake(EventPayload):
    """Query parameters a client connects with"""

    user_id: Optional[str] = Field(None, alias="userId")
    class_id: Optional[str] = Field(None, alias="classId")
    study_group_id: Optional[str] = Field(None, alias="studyGroupId")
    is_admin: bool = Field(False, alias="isAdmin")
    is_host: bool = Field(False, alias="isHost")

    @property
    def wants_host(self) -> bool:
        return self.is_admin or self.is_host
