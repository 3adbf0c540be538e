"""
ACHIEVEMENT ROUTER
File: app/progress/achievement_router.py
"""

from fastapi import APIRouter, HTTPException, Depends

from app.classes.dependencies import get_current_user
from app.live.errors import LiveSessionError
from app.progress.dependencies import get_progress_service, require_admin
from app.progress.models import AwardAchievementRequest, JLPTLevel, SetUserAchievementsRequest
from app.progress.progress_router import to_http_error
from app.progress.service import ProgressService

router = APIRouter(prefix="/achievements", tags=["Achievements"])


# ==================== CATALOGUE ====================

@router.post("/initialize")
async def initialize_achievements(
    service: ProgressService = Depends(get_progress_service),
    admin: dict = Depends(require_admin)
):
    try:
        count = await service.initialize_achievements()
        return {"success": True, "message": "N5 achievements initialized successfully", "count": count}
    except LiveSessionError as e:
        raise to_http_error(e)


@router.get("")
async def get_all_achievements(service: ProgressService = Depends(get_progress_service)):
    try:
        return {"success": True, "data": await service.list_achievements()}
    except LiveSessionError as e:
        raise to_http_error(e)


@router.get("/level/{level}")
async def get_achievements_by_level(level: JLPTLevel, service: ProgressService = Depends(get_progress_service)):
    try:
        return {"success": True, "data": await service.list_achievements(level.value)}
    except LiveSessionError as e:
        raise to_http_error(e)


# ==================== LEARNER ====================

@router.get("/user")
async def get_user_achievements(
    service: ProgressService = Depends(get_progress_service),
    user: dict = Depends(get_current_user)
):
    try:
        return {"success": True, **await service.user_achievements(user["sub"])}
    except LiveSessionError as e:
        raise to_http_error(e)


@router.get("/progress/{achievement_id}")
async def get_achievement_progress(
    achievement_id: str,
    service: ProgressService = Depends(get_progress_service),
    user: dict = Depends(get_current_user)
):
    try:
        return {"success": True, **await service.achievement_progress(user["sub"], achievement_id)}
    except LiveSessionError as e:
        raise to_http_error(e)


# ==================== ADMIN ====================

@router.post("/award")
async def award_achievement(
    data: AwardAchievementRequest,
    service: ProgressService = Depends(get_progress_service),
    admin: dict = Depends(require_admin)
):
    try:
        achievement = await service.award_achievement(data.user_id, data.achievement_id)
        return {"success": True, "message": "Achievement awarded successfully", "achievement": achievement}
    except LiveSessionError as e:
        raise to_http_error(e)


@router.post("/set-user")
async def set_user_achievements(
    data: SetUserAchievementsRequest,
    service: ProgressService = Depends(get_progress_service),
    admin: dict = Depends(require_admin)
):
    try:
        count = await service.set_user_achievements(data.user_id, data.study_level)
        return {"success": True, "message": f"Successfully set {count} achievements for user", "count": count}
    except LiveSessionError as e:
        raise to_http_error(e)
