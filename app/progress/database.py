from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
from datetime import datetime
from typing import Dict, List, Optional
import uuid

from app.classes.database import serialize_mongo, serialize_many
from app.live.errors import PersistenceError
from app.progress.errors import ProgressStateError
from app.progress.tracker import initial_module_progress
from app.system.logger import get_logger

logger = get_logger(__name__)


class ProgressStore:
    """
    Persistence for courses, enrollments, learner profiles and the achievement catalogue.

    Enrollment and profile documents carry a `version` counter. Saves only land
    when the stored version still matches the one that was read.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    # ==================== INDEXES ====================

    async def create_indexes(self):
        await self.db.courses.create_index("course_id", unique=True)
        await self.db.course_enrollments.create_index([("user_id", 1), ("course_id", 1)], unique=True)
        await self.db.learner_profiles.create_index("user_id", unique=True)
        await self.db.achievements.create_index("achievement_id", unique=True)
        await self.db.achievements.create_index("level")
        logger.info("Progress indexes created")

    # ==================== COURSES ====================

    async def create_course(self, course_data: dict) -> dict:
        course_doc = {
            "course_id": f"COURSE_{uuid.uuid4().hex[:12].upper()}",
            "title": course_data["title"],
            "description": course_data.get("description", ""),
            "level": course_data["level"],
            "modules": course_data["modules"],
            "created_at": datetime.utcnow(),
            "updated_at": datetime.utcnow(),
        }
        try:
            await self.db.courses.insert_one(course_doc)
        except PyMongoError as e:
            raise PersistenceError("Failed to create course", {"error": str(e)}) from e
        return serialize_mongo(course_doc)

    async def get_course(self, course_id: str) -> Optional[dict]:
        try:
            doc = await self.db.courses.find_one({"course_id": course_id})
        except PyMongoError as e:
            raise PersistenceError("Failed to load course", {"course_id": course_id, "error": str(e)}) from e
        return serialize_mongo(doc) if doc else None

    async def list_courses(self) -> List[dict]:
        try:
            docs = await self.db.courses.find({}).sort("created_at", 1).to_list(length=None)
        except PyMongoError as e:
            raise PersistenceError("Failed to list courses", {"error": str(e)}) from e
        return serialize_many(docs)

    async def get_courses(self, course_ids: List[str]) -> Dict[str, dict]:
        if not course_ids:
            return {}
        try:
            docs = await self.db.courses.find({"course_id": {"$in": list(course_ids)}}).to_list(length=None)
        except PyMongoError as e:
            raise PersistenceError("Failed to load courses", {"error": str(e)}) from e
        return {doc["course_id"]: serialize_mongo(doc) for doc in docs}

    # ==================== ENROLLMENTS ====================

    async def create_enrollment(self, user_id: str, course: dict) -> dict:
        """Raises ProgressStateError when the learner is already enrolled"""
        enrollment_doc = {
            "enrollment_id": f"ENR_{uuid.uuid4().hex[:12].upper()}",
            "user_id": user_id,
            "course_id": course["course_id"],
            "level": course["level"],
            "module_progress": initial_module_progress(course),
            "overall_progress": 0.0,
            "next_lesson": None,
            "version": 0,
            "enrolled_at": datetime.utcnow(),
            "updated_at": datetime.utcnow(),
        }
        try:
            await self.db.course_enrollments.insert_one(enrollment_doc)
        except DuplicateKeyError as e:
            raise ProgressStateError(
                "Already enrolled in this course",
                {"user_id": user_id, "course_id": course["course_id"]}
            ) from e
        except PyMongoError as e:
            raise PersistenceError("Failed to enroll", {"course_id": course["course_id"], "error": str(e)}) from e
        return serialize_mongo(enrollment_doc)

    async def get_enrollment(self, user_id: str, course_id: str) -> Optional[dict]:
        try:
            doc = await self.db.course_enrollments.find_one({"user_id": user_id, "course_id": course_id})
        except PyMongoError as e:
            raise PersistenceError("Failed to load enrollment", {"course_id": course_id, "error": str(e)}) from e
        return serialize_mongo(doc) if doc else None

    async def list_enrollments(self, user_id: str) -> List[dict]:
        try:
            docs = await self.db.course_enrollments.find({"user_id": user_id}).sort("enrolled_at", 1).to_list(length=None)
        except PyMongoError as e:
            raise PersistenceError("Failed to list enrollments", {"user_id": user_id, "error": str(e)}) from e
        return serialize_many(docs)

    async def save_enrollment(self, enrollment: dict) -> bool:
        """Write back progress fields. False when someone else saved first."""
        try:
            result = await self.db.course_enrollments.update_one(
                {"enrollment_id": enrollment["enrollment_id"], "version": enrollment["version"]},
                {
                    "$set": {
                        "module_progress": enrollment["module_progress"],
                        "overall_progress": enrollment["overall_progress"],
                        "next_lesson": enrollment["next_lesson"],
                        "updated_at": datetime.utcnow(),
                    },
                    "$inc": {"version": 1},
                }
            )
        except PyMongoError as e:
            raise PersistenceError(
                "Failed to save course progress",
                {"enrollment_id": enrollment["enrollment_id"], "error": str(e)}
            ) from e
        return result.modified_count > 0

    # ==================== LEARNER PROFILES ====================

    async def get_or_create_profile(self, user_id: str) -> dict:
        try:
            doc = await self.db.learner_profiles.find_one_and_update(
                {"user_id": user_id},
                {"$setOnInsert": {
                    "streak": 0,
                    "longest_streak": 0,
                    "last_access": None,
                    "daily_activity": [],
                    "achievements": [],
                    "recent_achievements": [],
                    "version": 0,
                    "created_at": datetime.utcnow(),
                }},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise PersistenceError("Failed to load learner profile", {"user_id": user_id, "error": str(e)}) from e
        return serialize_mongo(doc)

    async def save_profile(self, profile: dict) -> bool:
        """Write back streak, activity and achievements. False when someone else saved first."""
        try:
            result = await self.db.learner_profiles.update_one(
                {"user_id": profile["user_id"], "version": profile["version"]},
                {
                    "$set": {
                        "streak": profile["streak"],
                        "longest_streak": profile["longest_streak"],
                        "last_access": profile["last_access"],
                        "daily_activity": profile["daily_activity"],
                        "achievements": profile["achievements"],
                        "recent_achievements": profile["recent_achievements"],
                        "updated_at": datetime.utcnow(),
                    },
                    "$inc": {"version": 1},
                }
            )
        except PyMongoError as e:
            raise PersistenceError("Failed to save learner profile", {"user_id": profile["user_id"], "error": str(e)}) from e
        return result.modified_count > 0

    # ==================== ACHIEVEMENT CATALOGUE ====================

    async def upsert_achievements(self, definitions: List[dict]) -> int:
        try:
            for definition in definitions:
                await self.db.achievements.replace_one(
                    {"achievement_id": definition["achievement_id"]},
                    dict(definition),
                    upsert=True,
                )
        except PyMongoError as e:
            raise PersistenceError("Failed to store achievements", {"error": str(e)}) from e
        return len(definitions)

    async def list_achievements(self, level: Optional[str] = None) -> List[dict]:
        query = {"level": level} if level else {}
        try:
            docs = await self.db.achievements.find(query).sort("achievement_id", 1).to_list(length=None)
        except PyMongoError as e:
            raise PersistenceError("Failed to list achievements", {"error": str(e)}) from e
        return serialize_many(docs)

    async def get_achievement(self, achievement_id: str) -> Optional[dict]:
        try:
            doc = await self.db.achievements.find_one({"achievement_id": achievement_id})
        except PyMongoError as e:
            raise PersistenceError(
                "Failed to load achievement",
                {"achievement_id": achievement_id, "error": str(e)}
            ) from e
        return serialize_mongo(doc) if doc else None
