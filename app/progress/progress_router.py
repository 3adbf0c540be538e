"""
PROGRESS ROUTER
File: app/progress/progress_router.py

Course catalogue, enrollment, lesson completion, daily streak and
the learner's progress dashboard.
"""

from fastapi import APIRouter, HTTPException, Depends

from app.classes.dependencies import get_current_user
from app.live.errors import LiveSessionError, PersistenceError
from app.progress.dependencies import get_progress_service, require_admin
from app.progress.errors import ProgressConflictError, ProgressNotFoundError, ProgressStateError
from app.progress.models import ActivityReport, CourseCreate, LessonStatusUpdate
from app.progress.service import ProgressService
from app.system.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Progress"])


def to_http_error(e: LiveSessionError) -> HTTPException:
    if isinstance(e, ProgressNotFoundError):
        return HTTPException(status_code=404, detail=e.message)
    if isinstance(e, ProgressStateError):
        return HTTPException(status_code=400, detail=e.message)
    if isinstance(e, ProgressConflictError):
        return HTTPException(status_code=409, detail=e.message)
    if isinstance(e, PersistenceError):
        logger.error("Progress storage failure: %s", e)
    return HTTPException(status_code=500, detail=e.message)


# ==================== DASHBOARD ====================

@router.get("/progress")
async def get_progress(
    service: ProgressService = Depends(get_progress_service),
    user: dict = Depends(get_current_user)
):
    try:
        return await service.progress_overview(user["sub"])
    except LiveSessionError as e:
        raise to_http_error(e)


@router.post("/progress/activity")
async def record_activity(
    data: ActivityReport,
    service: ProgressService = Depends(get_progress_service),
    user: dict = Depends(get_current_user)
):
    try:
        record = await service.record_activity(
            user["sub"],
            goals_completed=data.goals_completed,
            practice_completed=data.practice_completed,
            time_spent=data.time_spent,
        )
        return {"status": "success", "data": record}
    except LiveSessionError as e:
        raise to_http_error(e)


@router.post("/streak/check")
async def check_daily_streak(
    service: ProgressService = Depends(get_progress_service),
    user: dict = Depends(get_current_user)
):
    try:
        return {"success": True, "data": await service.check_daily_streak(user["sub"])}
    except LiveSessionError as e:
        raise to_http_error(e)


# ==================== COURSES ====================

@router.post("/courses", status_code=201)
async def create_course(
    data: CourseCreate,
    service: ProgressService = Depends(get_progress_service),
    admin: dict = Depends(require_admin)
):
    try:
        course = await service.create_course(data.model_dump(mode="json"))
        return {"status": "success", "data": course}
    except LiveSessionError as e:
        raise to_http_error(e)


@router.get("/courses")
async def list_courses(service: ProgressService = Depends(get_progress_service)):
    try:
        courses = await service.list_courses()
        return {"status": "success", "data": courses, "count": len(courses)}
    except LiveSessionError as e:
        raise to_http_error(e)


@router.get("/courses/{course_id}")
async def get_course(course_id: str, service: ProgressService = Depends(get_progress_service)):
    try:
        return {"status": "success", "data": await service.get_course(course_id)}
    except LiveSessionError as e:
        raise to_http_error(e)


@router.post("/courses/{course_id}/enroll")
async def enroll_course(
    course_id: str,
    service: ProgressService = Depends(get_progress_service),
    user: dict = Depends(get_current_user)
):
    try:
        enrollment = await service.enroll(user["sub"], course_id)
        return {"status": "success", "message": "Successfully enrolled in course", "data": enrollment}
    except LiveSessionError as e:
        raise to_http_error(e)


@router.get("/courses/{course_id}/progress")
async def get_course_progress(
    course_id: str,
    service: ProgressService = Depends(get_progress_service),
    user: dict = Depends(get_current_user)
):
    try:
        return {"status": "success", "data": await service.course_progress(user["sub"], course_id)}
    except LiveSessionError as e:
        raise to_http_error(e)


@router.put("/courses/{course_id}/modules/{module_id}/lessons/{lesson_id}")
async def update_lesson_status(
    course_id: str,
    module_id: str,
    lesson_id: str,
    data: LessonStatusUpdate,
    service: ProgressService = Depends(get_progress_service),
    user: dict = Depends(get_current_user)
):
    try:
        result = await service.update_lesson_status(user["sub"], course_id, module_id, lesson_id, data.completed)
        return {"status": "success", "data": result}
    except LiveSessionError as e:
        raise to_http_error(e)
