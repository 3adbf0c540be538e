from fastapi import APIRouter, HTTPException, Depends

from app.classes.database import LiveClassStore
from app.classes.dependencies import get_store, get_coordinator, get_current_user_id
from app.classes.models import StudyGroupMessageCreate
from app.config import CHAT_HISTORY_LIMIT
from app.live.errors import PersistenceError
from app.system.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/studygroups", tags=["Study Groups"])


@router.get("/{study_group_id}/messages")
async def get_study_group_messages(
    study_group_id: str,
    store: LiveClassStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id)
):
    try:
        return await store.list_study_group_messages(study_group_id, limit=CHAT_HISTORY_LIMIT)
    except PersistenceError:
        logger.exception("Fetching study group %s messages failed", study_group_id)
        raise HTTPException(status_code=500, detail="Failed to fetch messages")


@router.post("/{study_group_id}/messages", status_code=201)
async def send_study_group_message(
    study_group_id: str,
    data: StudyGroupMessageCreate,
    store: LiveClassStore = Depends(get_store),
    coordinator=Depends(get_coordinator),
    user_id: str = Depends(get_current_user_id)
):
    """Save a message and push it to members connected over the socket"""
    try:
        message = await store.save_study_group_message(study_group_id, user_id, data.content)
    except PersistenceError:
        logger.exception("Saving study group %s message failed", study_group_id)
        raise HTTPException(status_code=500, detail="Failed to send message")

    await coordinator.publish_study_group_message(study_group_id, message)
    return message
