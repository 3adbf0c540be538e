"""
LIVE CLASS ROUTER
File: app/classes/class_router.py

Class listings, details, joining and chat backfill.
Every read path reconciles the stored status against the class schedule.
"""

from fastapi import APIRouter, HTTPException, Depends
from datetime import datetime

from app.auth.auth_utils import is_platform_admin
from app.classes.database import LiveClassStore
from app.classes.dependencies import get_store, get_coordinator, get_current_user
from app.classes.models import ClassCreate, ClassStatus, ClassStatusUpdate
from app.classes.status import reconcile_class_status, reconcile_many
from app.config import CHAT_HISTORY_LIMIT
from app.live.errors import PersistenceError
from app.system.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/classes", tags=["Live Classes"])


async def load_class_or_404(store: LiveClassStore, class_id: str) -> dict:
    class_doc = await store.get_class(class_id)
    if not class_doc:
        raise HTTPException(status_code=404, detail="Class not found")
    return class_doc


async def _reconciled_listing(store: LiveClassStore, query: dict, keep: ClassStatus, sort_direction: int = 1):
    now = datetime.utcnow()
    classes = await store.list_classes(query, sort_direction)
    await reconcile_many(store, classes, now)
    # Filter again, reconciliation may have moved some classes along
    return [c for c in classes if c["status"] == keep.value]


# ==================== LISTINGS ====================

@router.get("/upcoming")
async def get_upcoming_classes(store: LiveClassStore = Depends(get_store)):
    try:
        now = datetime.utcnow()
        classes = await _reconciled_listing(
            store,
            {"start_time": {"$gt": now}, "status": {"$ne": ClassStatus.CANCELLED.value}},
            ClassStatus.UPCOMING,
        )
        return {"status": "success", "data": classes, "count": len(classes)}
    except PersistenceError as e:
        logger.exception("Listing upcoming classes failed")
        raise HTTPException(status_code=500, detail=e.message)


@router.get("/ongoing")
async def get_ongoing_classes(store: LiveClassStore = Depends(get_store)):
    try:
        now = datetime.utcnow()
        classes = await _reconciled_listing(
            store,
            {
                "start_time": {"$lte": now},
                "end_time": {"$gt": now},
                "status": {"$ne": ClassStatus.CANCELLED.value},
            },
            ClassStatus.ONGOING,
        )
        return {"status": "success", "data": classes, "count": len(classes)}
    except PersistenceError as e:
        logger.exception("Listing ongoing classes failed")
        raise HTTPException(status_code=500, detail=e.message)


@router.get("/previous")
async def get_previous_classes(store: LiveClassStore = Depends(get_store)):
    try:
        now = datetime.utcnow()
        classes = await _reconciled_listing(
            store,
            {"end_time": {"$lte": now}, "status": {"$ne": ClassStatus.CANCELLED.value}},
            ClassStatus.COMPLETED,
            sort_direction=-1,
        )
        return {"status": "success", "data": classes, "count": len(classes)}
    except PersistenceError as e:
        logger.exception("Listing previous classes failed")
        raise HTTPException(status_code=500, detail=e.message)


# ==================== SINGLE CLASS ====================

@router.post("", status_code=201)
async def create_class(
    data: ClassCreate,
    store: LiveClassStore = Depends(get_store),
    user: dict = Depends(get_current_user)
):
    try:
        class_doc = await store.create_class(data.model_dump(), host_id=user["sub"])
        return {"status": "success", "data": class_doc}
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=e.message)


@router.get("/{class_id}")
async def get_class(
    class_id: str,
    store: LiveClassStore = Depends(get_store),
    user: dict = Depends(get_current_user)
):
    try:
        class_doc = await load_class_or_404(store, class_id)
        await reconcile_class_status(store, class_doc)
        return {"status": "success", "data": class_doc}
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=e.message)


@router.get("/{class_id}/live")
async def get_live_status(
    class_id: str,
    store: LiveClassStore = Depends(get_store),
    coordinator=Depends(get_coordinator),
    user: dict = Depends(get_current_user)
):
    """Who is connected right now and whether the host is streaming"""
    try:
        await load_class_or_404(store, class_id)
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=e.message)
    return {"status": "success", "data": coordinator.live_status(class_id)}


@router.post("/{class_id}/join")
async def join_class(
    class_id: str,
    store: LiveClassStore = Depends(get_store),
    user: dict = Depends(get_current_user)
):
    user_id = user["sub"]
    try:
        class_doc = await load_class_or_404(store, class_id)
        status = await reconcile_class_status(store, class_doc)

        if status in (ClassStatus.CANCELLED, ClassStatus.COMPLETED):
            raise HTTPException(status_code=400, detail=f"Class is {status.value}")
        if user_id in class_doc.get("participants", []):
            raise HTTPException(status_code=400, detail="You are already enrolled in this class")

        max_participants = class_doc.get("max_participants", 50)
        if len(class_doc.get("participants", [])) >= max_participants:
            raise HTTPException(status_code=400, detail="Class is full")

        # Lost a race with another join
        if not await store.add_participant(class_id, user_id, max_participants):
            raise HTTPException(status_code=400, detail="Class is full")

        return {"status": "success", "message": "Successfully joined the class"}
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=e.message)


@router.patch("/{class_id}/status")
async def update_class_status(
    class_id: str,
    data: ClassStatusUpdate,
    store: LiveClassStore = Depends(get_store),
    user: dict = Depends(get_current_user)
):
    try:
        class_doc = await load_class_or_404(store, class_id)
        if class_doc.get("host_id") != user["sub"] and not is_platform_admin(user):
            raise HTTPException(status_code=403, detail="Only the class host can change its status")

        await store.set_class_status(class_id, data.status.value)
        class_doc["status"] = data.status.value
        logger.info("Class %s status set to %s by %s", class_id, data.status.value, user["sub"])
        return {"status": "success", "data": class_doc}
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=e.message)


# ==================== CHAT BACKFILL ====================

@router.get("/{class_id}/messages")
async def get_chat_messages(
    class_id: str,
    store: LiveClassStore = Depends(get_store),
    user: dict = Depends(get_current_user)
):
    """Last CHAT_HISTORY_LIMIT messages, oldest first, for the initial chat load"""
    try:
        return await store.list_messages(class_id, limit=CHAT_HISTORY_LIMIT)
    except PersistenceError as e:
        logger.exception("Fetching messages for class %s failed", class_id)
        raise HTTPException(status_code=500, detail=e.message)
