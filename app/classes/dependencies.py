from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.auth.auth_utils import verify_lum_token
from app.classes.database import LiveClassStore


def get_db_instance():
    """Get database from main module"""
    from app.main import db
    return db

# ==================== DEPENDENCY FUNCTIONS ====================

async def get_db() -> AsyncIOMotorDatabase:
    """Database dependency"""
    return get_db_instance()

async def get_store(db: AsyncIOMotorDatabase = Depends(get_db)) -> LiveClassStore:
    return LiveClassStore(db)

def get_coordinator():
    """The process-wide live session coordinator"""
    from app.main import coordinator
    return coordinator

async def get_current_user(payload: dict = Depends(verify_lum_token)) -> dict:
    return payload

async def get_current_user_id(payload: dict = Depends(verify_lum_token)) -> str:
    return payload["sub"]
