from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError
from datetime import datetime, timedelta
from typing import List, Optional
import uuid

from app.classes.models import ClassStatus, MessageKind
from app.live.errors import PersistenceError
from app.system.logger import get_logger

logger = get_logger(__name__)


def serialize_mongo(doc: dict) -> dict:
    if "_id" in doc:
        doc["_id"] = str(doc["_id"])
    return doc

def serialize_many(docs: list[dict]) -> list[dict]:
    return [serialize_mongo(doc) for doc in docs]


def format_message(doc: dict) -> dict:
    """Wire shape of a chat message (REST backfill and receive_message)"""
    return {
        "id": doc["message_id"],
        "senderId": doc["sender_id"],
        "senderName": doc["sender_name"],
        "content": doc["content"],
        "type": doc["kind"],
        "classId": doc["class_id"],
        "timestamp": doc["timestamp"],
    }

def format_study_group_message(doc: dict) -> dict:
    return {
        "id": doc["message_id"],
        "studyGroupId": doc["study_group_id"],
        "content": doc["content"],
        "sender": doc["sender"],
        "createdAt": doc["created_at"],
    }


class LiveClassStore:
    """
    Persistence for classes, class chat and study group chat.
    Every Mongo failure surfaces as PersistenceError.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    # ==================== INDEXES ====================

    async def create_indexes(self):
        await self.db.classes.create_index("class_id", unique=True)
        await self.db.classes.create_index([("start_time", 1), ("status", 1)])
        await self.db.chat_messages.create_index("message_id", unique=True)
        await self.db.chat_messages.create_index([("class_id", 1), ("timestamp", -1)])
        await self.db.study_group_messages.create_index([("study_group_id", 1), ("created_at", 1)])
        logger.info("Live class indexes created")

    # ==================== CLASS CRUD ====================

    async def create_class(self, class_data: dict, host_id: str) -> dict:
        class_id = f"CLASS_{uuid.uuid4().hex[:12].upper()}"
        start_time = class_data["start_time"]
        duration = class_data.get("duration", 60)

        class_doc = {
            "class_id": class_id,
            "title": class_data["title"],
            "description": class_data["description"],
            "host_id": host_id,
            "participants": [],
            "start_time": start_time,
            "end_time": start_time + timedelta(minutes=duration),
            "duration": duration,
            "status": ClassStatus.UPCOMING.value,
            "max_participants": class_data.get("max_participants", 50),
            "level": class_data["level"],
            "meeting_link": class_data.get("meeting_link"),
            "materials": class_data.get("materials", []),
            "created_at": datetime.utcnow(),
            "updated_at": datetime.utcnow(),
        }

        try:
            await self.db.classes.insert_one(class_doc)
        except PyMongoError as e:
            raise PersistenceError("Failed to create class", {"error": str(e)}) from e
        return serialize_mongo(class_doc)

    async def get_class(self, class_id: str) -> Optional[dict]:
        try:
            doc = await self.db.classes.find_one({"class_id": class_id})
        except PyMongoError as e:
            raise PersistenceError("Failed to load class", {"class_id": class_id, "error": str(e)}) from e
        return serialize_mongo(doc) if doc else None

    async def list_classes(self, query: dict, sort_direction: int = 1) -> List[dict]:
        try:
            cursor = self.db.classes.find(query).sort("start_time", sort_direction)
            docs = await cursor.to_list(length=None)
        except PyMongoError as e:
            raise PersistenceError("Failed to list classes", {"error": str(e)}) from e
        return serialize_many(docs)

    async def set_class_status(self, class_id: str, status: str) -> bool:
        try:
            result = await self.db.classes.update_one(
                {"class_id": class_id},
                {"$set": {"status": status, "updated_at": datetime.utcnow()}}
            )
        except PyMongoError as e:
            raise PersistenceError("Failed to update class status", {"class_id": class_id, "error": str(e)}) from e
        return result.matched_count > 0

    async def add_participant(self, class_id: str, user_id: str, max_participants: int) -> bool:
        """
        Atomically add a participant while the class still has room.
        Returns False when the user is already in or the class filled up meanwhile.
        """
        try:
            result = await self.db.classes.update_one(
                {
                    "class_id": class_id,
                    "participants": {"$ne": user_id},
                    f"participants.{max_participants - 1}": {"$exists": False},
                },
                {"$push": {"participants": user_id}, "$set": {"updated_at": datetime.utcnow()}}
            )
        except PyMongoError as e:
            raise PersistenceError("Failed to join class", {"class_id": class_id, "error": str(e)}) from e
        return result.modified_count > 0

    # ==================== CLASS CHAT ====================

    async def save_message(
        self,
        class_id: str,
        sender_id: str,
        sender_name: str,
        content: str,
        kind: MessageKind = MessageKind.TEXT,
    ) -> dict:
        message_doc = {
            "message_id": f"MSG_{uuid.uuid4().hex[:12].upper()}",
            "class_id": class_id,
            "sender_id": sender_id,
            "sender_name": sender_name,
            "content": content,
            "kind": MessageKind(kind).value,
            "timestamp": datetime.utcnow(),
        }

        try:
            await self.db.chat_messages.insert_one(message_doc)
        except PyMongoError as e:
            raise PersistenceError("Failed to save message", {"class_id": class_id, "error": str(e)}) from e
        return format_message(message_doc)

    async def list_messages(self, class_id: str, limit: int = 100) -> List[dict]:
        """Most recent `limit` messages, oldest first"""
        try:
            cursor = (
                self.db.chat_messages.find({"class_id": class_id})
                .sort([("timestamp", -1), ("_id", -1)])
                .limit(limit)
            )
            docs = await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise PersistenceError("Failed to load messages", {"class_id": class_id, "error": str(e)}) from e
        docs.reverse()
        return [format_message(doc) for doc in docs]

    # ==================== STUDY GROUP CHAT ====================

    async def save_study_group_message(self, study_group_id: str, sender: str, content: str) -> dict:
        message_doc = {
            "message_id": f"SGMSG_{uuid.uuid4().hex[:12].upper()}",
            "study_group_id": study_group_id,
            "sender": sender,
            "content": content,
            "created_at": datetime.utcnow(),
        }

        try:
            await self.db.study_group_messages.insert_one(message_doc)
        except PyMongoError as e:
            raise PersistenceError(
                "Failed to save study group message",
                {"study_group_id": study_group_id, "error": str(e)}
            ) from e
        return format_study_group_message(message_doc)

    async def list_study_group_messages(self, study_group_id: str, limit: int = 100) -> List[dict]:
        try:
            cursor = (
                self.db.study_group_messages.find({"study_group_id": study_group_id})
                .sort([("created_at", -1), ("_id", -1)])
                .limit(limit)
            )
            docs = await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise PersistenceError(
                "Failed to load study group messages",
                {"study_group_id": study_group_id, "error": str(e)}
            ) from e
        docs.reverse()
        return [format_study_group_message(doc) for doc in docs]
