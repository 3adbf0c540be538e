"""
Shared fixtures for the live class test suite.

Provides: in-memory store doubles for live classes and progress, recording
socket channels, coordinator, progress service on a frozen clock, JWT helper
and a FastAPI TestClient wired to the fakes.
"""

import copy
import itertools
from datetime import datetime, timedelta
from typing import Optional

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from jose import jwt

from app.classes.database import format_message, format_study_group_message
from app.classes.models import MessageKind
from app.config import JWT_ALGORITHM, JWT_SECRET_KEY
from app.live.audio_storage import AudioStorage
from app.live.coordinator import SessionCoordinator
from app.live.errors import PersistenceError
from app.progress.errors import ProgressStateError
from app.progress.service import ProgressService
from app.progress.tracker import initial_module_progress


def _matches(doc: dict, query: dict) -> bool:
    for key, cond in query.items():
        value = doc.get(key)
        if isinstance(cond, dict):
            for op, operand in cond.items():
                if op == "$gt" and not value > operand:
                    return False
                if op == "$lte" and not value <= operand:
                    return False
                if op == "$ne" and value == operand:
                    return False
        elif value != cond:
            return False
    return True


class FakeStore:
    """In-memory stand-in for LiveClassStore."""

    def __init__(self):
        self.classes = {}
        self.messages = []
        self.study_group_messages = []
        self.status_writes = []
        self.fail_writes = False
        self.fail_status_writes = False
        self._seq = itertools.count(1)
        self._epoch = datetime.utcnow()

    def _next(self):
        n = next(self._seq)
        return n, self._epoch + timedelta(milliseconds=n)

    def add_class(self, class_id: str, start_time: datetime, end_time: datetime,
                  status: str = "upcoming", host_id: str = "host-1", **extra) -> dict:
        doc = {
            "class_id": class_id,
            "title": extra.pop("title", "Keigo basics"),
            "description": "Polite forms",
            "host_id": host_id,
            "participants": [],
            "start_time": start_time,
            "end_time": end_time,
            "duration": int((end_time - start_time).total_seconds() // 60),
            "status": status,
            "max_participants": 50,
            "level": "beginner",
            "materials": [],
        }
        doc.update(extra)
        self.classes[class_id] = doc
        return doc

    async def create_indexes(self):
        return None

    async def create_class(self, class_data: dict, host_id: str) -> dict:
        n, _ = self._next()
        class_id = f"CLASS_{n:012d}"
        start = class_data["start_time"]
        return dict(self.add_class(
            class_id,
            start,
            start + timedelta(minutes=class_data["duration"]),
            host_id=host_id,
            title=class_data["title"],
            max_participants=class_data["max_participants"],
            level=class_data["level"],
        ))

    async def get_class(self, class_id: str) -> Optional[dict]:
        doc = self.classes.get(class_id)
        return dict(doc) if doc else None

    async def list_classes(self, query: dict, sort_direction: int = 1):
        docs = [dict(d) for d in self.classes.values() if _matches(d, query)]
        return sorted(docs, key=lambda d: d["start_time"], reverse=sort_direction < 0)

    async def set_class_status(self, class_id: str, status: str) -> bool:
        if self.fail_status_writes:
            raise PersistenceError("Failed to update class status")
        if class_id not in self.classes:
            return False
        self.classes[class_id]["status"] = status
        self.status_writes.append((class_id, status))
        return True

    async def add_participant(self, class_id: str, user_id: str, max_participants: int) -> bool:
        participants = self.classes[class_id]["participants"]
        if user_id in participants or len(participants) >= max_participants:
            return False
        participants.append(user_id)
        return True

    async def save_message(self, class_id, sender_id, sender_name, content, kind=MessageKind.TEXT) -> dict:
        if self.fail_writes:
            raise PersistenceError("Failed to save message")
        n, ts = self._next()
        doc = {
            "message_id": f"MSG_{n:012d}",
            "class_id": class_id,
            "sender_id": sender_id,
            "sender_name": sender_name,
            "content": content,
            "kind": MessageKind(kind).value,
            "timestamp": ts,
        }
        self.messages.append(doc)
        return format_message(doc)

    async def list_messages(self, class_id: str, limit: int = 100):
        docs = sorted((m for m in self.messages if m["class_id"] == class_id), key=lambda m: m["timestamp"])
        return [format_message(m) for m in docs[-limit:]]

    async def save_study_group_message(self, study_group_id, sender, content) -> dict:
        if self.fail_writes:
            raise PersistenceError("Failed to save study group message")
        n, ts = self._next()
        doc = {
            "message_id": f"SGMSG_{n:012d}",
            "study_group_id": study_group_id,
            "sender": sender,
            "content": content,
            "created_at": ts,
        }
        self.study_group_messages.append(doc)
        return format_study_group_message(doc)

    async def list_study_group_messages(self, study_group_id: str, limit: int = 100):
        docs = [m for m in self.study_group_messages if m["study_group_id"] == study_group_id]
        return [format_study_group_message(m) for m in docs[-limit:]]


def sample_modules() -> list:
    """Two modules: three vocabulary lessons, one grammar, one reading"""
    return [
        {"id": "m1", "title": "Hiragana", "description": "", "lessons": [
            {"id": "l1", "title": "a-i-u-e-o", "type": "vocabulary", "duration": 10},
            {"id": "l2", "title": "ka-ki-ku-ke-ko", "type": "vocabulary", "duration": 15},
            {"id": "l3", "title": "desu", "type": "grammar", "duration": 20},
        ]},
        {"id": "m2", "title": "Greetings", "description": "", "lessons": [
            {"id": "l4", "title": "Ohayou", "type": "vocabulary", "duration": 10},
            {"id": "l5", "title": "Signs", "type": "reading", "duration": 5},
        ]},
    ]


class FakeProgressStore:
    """In-memory stand-in for ProgressStore, with the same version checks."""

    def __init__(self):
        self.courses = {}
        self.enrollments = {}
        self.profiles = {}
        self.achievements = {}
        # Number of upcoming saves that should lose the version check
        self.stale_saves = 0
        self._seq = itertools.count(1)

    def _stale(self) -> bool:
        if self.stale_saves:
            self.stale_saves -= 1
            return True
        return False

    def add_course(self, course_id: str, level: str = "N5", modules=None) -> dict:
        doc = {
            "course_id": course_id,
            "title": f"{level} foundations",
            "description": "",
            "level": level,
            "modules": modules if modules is not None else [],
            "created_at": datetime.utcnow(),
        }
        self.courses[course_id] = doc
        return doc

    async def create_indexes(self):
        return None

    async def create_course(self, course_data: dict) -> dict:
        course_id = f"COURSE_{next(self._seq):012d}"
        doc = self.add_course(course_id, course_data["level"], copy.deepcopy(course_data["modules"]))
        doc["title"] = course_data["title"]
        return copy.deepcopy(doc)

    async def get_course(self, course_id):
        doc = self.courses.get(course_id)
        return copy.deepcopy(doc) if doc else None

    async def list_courses(self):
        return [copy.deepcopy(doc) for doc in self.courses.values()]

    async def get_courses(self, course_ids):
        return {cid: copy.deepcopy(self.courses[cid]) for cid in course_ids if cid in self.courses}

    async def create_enrollment(self, user_id, course):
        key = (user_id, course["course_id"])
        if key in self.enrollments:
            raise ProgressStateError("Already enrolled in this course")
        doc = {
            "enrollment_id": f"ENR_{next(self._seq):012d}",
            "user_id": user_id,
            "course_id": course["course_id"],
            "level": course["level"],
            "module_progress": initial_module_progress(course),
            "overall_progress": 0.0,
            "next_lesson": None,
            "version": 0,
            "enrolled_at": datetime.utcnow(),
        }
        self.enrollments[key] = doc
        return copy.deepcopy(doc)

    async def get_enrollment(self, user_id, course_id):
        doc = self.enrollments.get((user_id, course_id))
        return copy.deepcopy(doc) if doc else None

    async def list_enrollments(self, user_id):
        return [copy.deepcopy(doc) for (uid, _), doc in self.enrollments.items() if uid == user_id]

    async def save_enrollment(self, enrollment):
        key = (enrollment["user_id"], enrollment["course_id"])
        current = self.enrollments.get(key)
        if self._stale() or current is None or current["version"] != enrollment["version"]:
            return False
        saved = copy.deepcopy(enrollment)
        saved["version"] += 1
        self.enrollments[key] = saved
        return True

    async def get_or_create_profile(self, user_id):
        if user_id not in self.profiles:
            self.profiles[user_id] = {
                "user_id": user_id,
                "streak": 0,
                "longest_streak": 0,
                "last_access": None,
                "daily_activity": [],
                "achievements": [],
                "recent_achievements": [],
                "version": 0,
            }
        return copy.deepcopy(self.profiles[user_id])

    async def save_profile(self, profile):
        current = self.profiles.get(profile["user_id"])
        if self._stale() or current is None or current["version"] != profile["version"]:
            return False
        saved = copy.deepcopy(profile)
        saved["version"] += 1
        self.profiles[profile["user_id"]] = saved
        return True

    async def upsert_achievements(self, definitions):
        for definition in definitions:
            self.achievements[definition["achievement_id"]] = copy.deepcopy(definition)
        return len(definitions)

    async def list_achievements(self, level=None):
        docs = [d for d in self.achievements.values() if level is None or d["level"] == level]
        return copy.deepcopy(sorted(docs, key=lambda d: d["achievement_id"]))

    async def get_achievement(self, achievement_id):
        doc = self.achievements.get(achievement_id)
        return copy.deepcopy(doc) if doc else None


class RecordingChannel:
    """Socket channel double that records every event pushed to it."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send(self, event, data=None):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append((event, data))

    def events(self):
        return [event for event, _ in self.sent]

    def of(self, event):
        return [data for name, data in self.sent if name == event]

    def clear(self):
        self.sent.clear()


class FrozenClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta):
        self.now += timedelta(**delta)


def make_token(sub: str, **claims) -> str:
    return jwt.encode({"sub": sub, **claims}, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def auth_header(sub: str, **claims) -> dict:
    return {"Authorization": f"Bearer {make_token(sub, **claims)}"}


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def audio_storage(tmp_path) -> AudioStorage:
    return AudioStorage(str(tmp_path / "audio"), "/uploads/audio")


@pytest.fixture
def coordinator(store, audio_storage) -> SessionCoordinator:
    return SessionCoordinator(store, audio_storage)


@pytest.fixture
def progress_store() -> FakeProgressStore:
    return FakeProgressStore()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 5, 1, 9, 30))


@pytest.fixture
def progress_service(progress_store, clock) -> ProgressService:
    return ProgressService(progress_store, write_retries=3, recent_limit=10, activity_window_days=30, clock=clock)


@pytest.fixture
def api_app(store, coordinator, progress_service) -> FastAPI:
    from app.classes.class_router import router as class_router
    from app.classes.dependencies import get_coordinator, get_store
    from app.live.router import router as live_router
    from app.progress.achievement_router import router as achievement_router
    from app.progress.dependencies import get_progress_service
    from app.progress.progress_router import router as progress_router
    from app.study_groups.router import router as study_group_router

    app = FastAPI()
    app.include_router(class_router)
    app.include_router(study_group_router)
    app.include_router(live_router)
    app.include_router(progress_router)
    app.include_router(achievement_router)
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    app.dependency_overrides[get_progress_service] = lambda: progress_service
    return app


@pytest.fixture
def client(api_app):
    with TestClient(api_app) as test_client:
        yield test_client
