from pydantic import BaseModel, ConfigDict, Field
from typing import List
from enum import Enum

# ==================== ENUMS ====================

class JLPTLevel(str, Enum):
    N5 = "N5"
    N4 = "N4"
    N3 = "N3"
    N2 = "N2"
    N1 = "N1"

class LessonType(str, Enum):
    WRITING = "writing"
    READING = "reading"
    VOCABULARY = "vocabulary"
    GRAMMAR = "grammar"
    LISTENING = "listening"
    PRACTICE = "practice"

class AchievementCategory(str, Enum):
    VOCABULARY = "vocabulary"
    GRAMMAR = "grammar"
    READING = "reading"
    SPEAKING = "speaking"
    WRITING = "writing"
    LISTENING = "listening"
    STREAK = "streak"
    GENERAL = "general"

class RequirementType(str, Enum):
    LESSON_COMPLETION = "lesson_completion"
    PRACTICE_SCORE = "practice_score"
    STREAK = "streak"
    TIME_SPENT = "time_spent"   # value in hours
    QUIZ_SCORE = "quiz_score"

# ==================== COURSE MODELS ====================

class LessonIn(BaseModel):
    id: str = Field(..., min_length=1)
    title: str
    type: LessonType
    duration: int = Field(..., ge=0)  # minutes

class ModuleIn(BaseModel):
    id: str = Field(..., min_length=1)
    title: str
    description: str = ""
    lessons: List[LessonIn] = []

class CourseCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    title: str = Field(..., min_length=1)
    description: str = ""
    level: JLPTLevel
    modules: List[ModuleIn] = Field(..., min_length=1)

class LessonStatusUpdate(BaseModel):
    completed: bool

# ==================== ACHIEVEMENT MODELS ====================

class AwardAchievementRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    achievement_id: str = Field(..., alias="achievementId")

class SetUserAchievementsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    user_id: str = Field(..., alias="userId")
    study_level: JLPTLevel = Field(..., alias="studyLevel")

class ActivityReport(BaseModel):
    """Counters added to today's activity record"""
    model_config = ConfigDict(populate_by_name=True)

    goals_completed: int = Field(0, ge=0, alias="goalsCompleted")
    practice_completed: int = Field(0, ge=0, alias="practiceCompleted")
    time_spent: int = Field(0, ge=0, alias="timeSpent")  # minutes
