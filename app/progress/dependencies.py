from fastapi import Depends, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.auth.auth_utils import is_platform_admin
from app.classes.dependencies import get_db, get_current_user
from app.progress.database import ProgressStore
from app.progress.service import ProgressService

# ==================== DEPENDENCY FUNCTIONS ====================

async def get_progress_store(db: AsyncIOMotorDatabase = Depends(get_db)) -> ProgressStore:
    return ProgressStore(db)

async def get_progress_service(store: ProgressStore = Depends(get_progress_store)) -> ProgressService:
    return ProgressService(store)

async def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if not is_platform_admin(user):
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
