from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional
from datetime import datetime, timezone
from enum import Enum

# ==================== ENUMS ====================

class ClassStatus(str, Enum):
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class ClassLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

class MessageKind(str, Enum):
    TEXT = "text"
    AUDIO = "audio"


def to_naive_utc(value: datetime) -> datetime:
    """Mongo hands back naive UTC datetimes, keep everything in that form"""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value

# ==================== CLASS MODELS ====================

class Material(BaseModel):
    title: str
    url: str

class ClassCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    start_time: datetime
    duration: int = Field(60, gt=0)  # minutes
    max_participants: int = Field(50, gt=0)
    level: ClassLevel
    meeting_link: Optional[str] = None
    materials: List[Material] = []

    @field_validator("start_time")
    @classmethod
    def normalize_start_time(cls, v: datetime) -> datetime:
        return to_naive_utc(v)

class ClassStatusUpdate(BaseModel):
    status: ClassStatus

# ==================== STUDY GROUP MODELS ====================

class StudyGroupMessageCreate(BaseModel):
    content: str = Field(..., min_length=1)
