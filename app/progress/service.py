"""
PROGRESS SERVICE
File: app/progress/service.py

Course enrollment, lesson completion, daily streaks and achievement unlocks.

Every write is read-modify-write on one document guarded by its `version`.
A lost race reloads the document and replays the change, up to
PROGRESS_WRITE_RETRIES times, then surfaces ProgressConflictError.
"""

from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from app.config import ACTIVITY_WINDOW_DAYS, PROGRESS_WRITE_RETRIES, RECENT_ACHIEVEMENTS_LIMIT
from app.progress import tracker
from app.progress.catalogue import N5_ACHIEVEMENTS, default_achievements, icon_color
from app.progress.database import ProgressStore
from app.progress.errors import ProgressConflictError, ProgressNotFoundError, ProgressStateError
from app.system.logger import get_logger

logger = get_logger(__name__)

# ==================== FORMATTERS ====================

def format_next_lesson(next_lesson: Optional[dict]) -> Optional[dict]:
    if not next_lesson:
        return None
    return {"moduleId": next_lesson["module_id"], "lessonId": next_lesson["lesson_id"]}


def format_enrollment(enrollment: dict) -> dict:
    return {
        "courseId": enrollment["course_id"],
        "level": enrollment["level"],
        "overallProgress": enrollment["overall_progress"],
        "nextLesson": format_next_lesson(enrollment.get("next_lesson")),
        "moduleProgress": [
            {
                "moduleId": entry["module_id"],
                "progress": entry["progress"],
                "completedLessons": list(entry["completed_lessons"]),
            }
            for entry in enrollment["module_progress"]
        ],
        "enrolledAt": enrollment.get("enrolled_at"),
    }


def format_user_achievement(achievement: dict) -> dict:
    return {
        "id": achievement["achievement_id"],
        "title": achievement["title"],
        "description": achievement["description"],
        "category": achievement["category"],
        "level": achievement["level"],
        "icon": achievement["icon"],
        "xpReward": achievement.get("xp_reward", 0),
        "currentProgress": achievement["current_progress"],
        "isCompleted": achievement["is_completed"],
        "completedAt": achievement.get("completed_at"),
    }


def format_recent_achievement(item: dict) -> dict:
    return {
        "id": item["achievement_id"],
        "title": item["title"],
        "description": item["description"],
        "category": item["category"],
        "level": item["level"],
        "icon": item["icon"],
        "completedAt": item["completed_at"],
    }


def format_streak(profile: dict) -> dict:
    return {
        "streak": profile.get("streak", 0),
        "longestStreak": profile.get("longest_streak", 0),
        "lastAccess": profile.get("last_access"),
    }


class ProgressService:
    def __init__(
        self,
        store: ProgressStore,
        write_retries: int = PROGRESS_WRITE_RETRIES,
        recent_limit: int = RECENT_ACHIEVEMENTS_LIMIT,
        activity_window_days: int = ACTIVITY_WINDOW_DAYS,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.write_retries = max(1, write_retries)
        self.recent_limit = recent_limit
        self.activity_window_days = activity_window_days
        self.clock = clock

    # ==================== PLUMBING ====================

    async def _retry(self, what: str, attempt: Callable[[], Awaitable[Tuple[bool, object]]]):
        for n in range(1, self.write_retries + 1):
            saved, result = await attempt()
            if saved:
                return result
            logger.warning("Concurrent update on %s, retrying (%d/%d)", what, n, self.write_retries)
        raise ProgressConflictError(
            f"Could not save {what}, please retry",
            {"attempts": self.write_retries}
        )

    async def _update_profile(self, user_id: str, mutate: Callable[[dict], Tuple[bool, object]]):
        """Run `mutate` on a fresh copy of the profile until the versioned save lands"""
        async def attempt():
            profile = await self.store.get_or_create_profile(user_id)
            dirty, result = mutate(profile)
            if not dirty:
                return True, (profile, result)
            return await self.store.save_profile(profile), (profile, result)

        return await self._retry("learner profile", attempt)

    async def _enrolled(self, user_id: str) -> Tuple[List[dict], Dict[str, dict]]:
        enrollments = await self.store.list_enrollments(user_id)
        courses = await self.store.get_courses([e["course_id"] for e in enrollments])
        return enrollments, courses

    async def _lesson_totals(self, user_id: str):
        enrollments, courses = await self._enrolled(user_id)
        return tracker.completed_lesson_totals(enrollments, courses)

    async def _catalogue(self, level: str) -> List[dict]:
        return await self.store.list_achievements(level) or default_achievements(level)

    # ==================== COURSES ====================

    async def create_course(self, course_data: dict) -> dict:
        course = await self.store.create_course(course_data)
        logger.info("Course %s created (%s)", course["course_id"], course["level"])
        return course

    async def list_courses(self) -> List[dict]:
        return await self.store.list_courses()

    async def get_course(self, course_id: str) -> dict:
        course = await self.store.get_course(course_id)
        if not course:
            raise ProgressNotFoundError("Course not found", {"course_id": course_id})
        return course

    async def enroll(self, user_id: str, course_id: str) -> dict:
        course = await self.get_course(course_id)
        enrollment = await self.store.create_enrollment(user_id, course)
        logger.info("User %s enrolled in %s", user_id, course_id)
        await self._assign_level_achievements(user_id, course["level"])
        return format_enrollment(enrollment)

    async def course_progress(self, user_id: str, course_id: str) -> dict:
        enrollment = await self.store.get_enrollment(user_id, course_id)
        if not enrollment:
            raise ProgressNotFoundError("Course not found in user's enrolled courses", {"course_id": course_id})
        return format_enrollment(enrollment)

    async def update_lesson_status(
        self,
        user_id: str,
        course_id: str,
        module_id: str,
        lesson_id: str,
        completed: bool,
    ) -> dict:
        course = await self.get_course(course_id)
        _, module = tracker.find_module(course, module_id)
        _, lesson = tracker.find_lesson(module, lesson_id)

        async def attempt():
            enrollment = await self.store.get_enrollment(user_id, course_id)
            if not enrollment:
                raise ProgressNotFoundError("Course not found in user's enrolled courses", {"course_id": course_id})
            changed = tracker.apply_lesson_status(enrollment, course, module_id, lesson_id, completed)
            return await self.store.save_enrollment(enrollment), (enrollment, changed)

        enrollment, changed = await self._retry("course progress", attempt)

        unlocked = []
        if changed:
            unlocked = await self._after_lesson_change(user_id, lesson if completed else None)

        module_entry = next(e for e in enrollment["module_progress"] if e["module_id"] == module_id)
        return {
            "moduleProgress": {
                "moduleId": module_id,
                "progress": module_entry["progress"],
                "completedLessons": list(module_entry["completed_lessons"]),
            },
            "courseProgress": enrollment["overall_progress"],
            "nextLesson": format_next_lesson(enrollment["next_lesson"]),
            "unlockedAchievements": [format_user_achievement(a) for a in unlocked],
        }

    async def _after_lesson_change(self, user_id: str, completed_lesson: Optional[dict]) -> List[dict]:
        totals = await self._lesson_totals(user_id)
        now = self.clock()

        def mutate(profile):
            if completed_lesson is not None:
                tracker.record_activity(
                    profile, now, self.activity_window_days,
                    lessons_completed=1,
                    time_spent=completed_lesson.get("duration", 0),
                )
            unlocked = tracker.refresh_achievements(profile, totals, now, self.recent_limit)
            return True, unlocked

        _, unlocked = await self._update_profile(user_id, mutate)
        for achievement in unlocked:
            logger.info("User %s unlocked %s", user_id, achievement["achievement_id"])
        return unlocked

    # ==================== STREAKS & ACTIVITY ====================

    async def check_daily_streak(self, user_id: str) -> dict:
        totals = await self._lesson_totals(user_id)
        now = self.clock()

        def mutate(profile):
            if not tracker.advance_streak(profile, now):
                return False, (False, [])
            return True, (True, tracker.refresh_achievements(profile, totals, now, self.recent_limit))

        profile, (advanced, unlocked) = await self._update_profile(user_id, mutate)
        if advanced:
            logger.info("User %s streak now %s", user_id, profile["streak"])
        return {
            **format_streak(profile),
            "alreadyCheckedToday": not advanced,
            "unlockedAchievements": [format_user_achievement(a) for a in unlocked],
        }

    async def record_activity(
        self,
        user_id: str,
        goals_completed: int = 0,
        practice_completed: int = 0,
        time_spent: int = 0,
    ) -> dict:
        totals = await self._lesson_totals(user_id)
        now = self.clock()

        def mutate(profile):
            record = tracker.record_activity(
                profile, now, self.activity_window_days,
                goals_completed=goals_completed,
                practice_completed=practice_completed,
                time_spent=time_spent,
            )
            return True, (dict(record), tracker.refresh_achievements(profile, totals, now, self.recent_limit))

        _, (record, unlocked) = await self._update_profile(user_id, mutate)
        return {
            "date": record["date"],
            "goalsCompleted": record["goals_completed"],
            "lessonsCompleted": record["lessons_completed"],
            "practiceCompleted": record["practice_completed"],
            "totalTimeSpent": record["total_time_spent"],
            "unlockedAchievements": [format_user_achievement(a) for a in unlocked],
        }

    async def progress_overview(self, user_id: str) -> dict:
        enrollments, courses = await self._enrolled(user_id)
        profile = await self.store.get_or_create_profile(user_id)

        return {
            "courses": [
                {
                    "id": enrollment["course_id"],
                    "name": courses[enrollment["course_id"]]["title"],
                    "level": enrollment["level"],
                    "overallProgress": enrollment["overall_progress"],
                }
                for enrollment in enrollments
                if enrollment["course_id"] in courses
            ],
            "skillBreakdown": tracker.skill_breakdown(enrollments, courses),
            "achievements": [
                {
                    "id": item["achievement_id"],
                    "type": item["category"],
                    "title": item["title"],
                    "description": item["description"],
                    "icon": icon_color(item["category"]),
                    "completedAt": item["completed_at"],
                }
                for item in profile.get("recent_achievements", [])
            ],
            "streak": {
                "current": profile.get("streak", 0),
                "best": profile.get("longest_streak", 0),
                "lastAccess": profile.get("last_access"),
            },
        }

    # ==================== ACHIEVEMENTS ====================

    async def initialize_achievements(self) -> int:
        count = await self.store.upsert_achievements(N5_ACHIEVEMENTS)
        logger.info("Initialized %d N5 achievements", count)
        return count

    async def list_achievements(self, level: Optional[str] = None) -> List[dict]:
        return await self.store.list_achievements(level)

    async def user_achievements(self, user_id: str) -> dict:
        profile = await self.store.get_or_create_profile(user_id)
        return {
            "recentAchievements": [format_recent_achievement(i) for i in profile.get("recent_achievements", [])],
            "allAchievements": [format_user_achievement(a) for a in profile.get("achievements", [])],
        }

    async def achievement_progress(self, user_id: str, achievement_id: str) -> dict:
        definition = await self.store.get_achievement(achievement_id)
        if not definition:
            raise ProgressNotFoundError("Achievement not found", {"achievement_id": achievement_id})

        profile = await self.store.get_or_create_profile(user_id)
        owned = next((a for a in profile.get("achievements", []) if a["achievement_id"] == achievement_id), None)
        if owned and owned["is_completed"]:
            progress = 100.0
        else:
            progress = tracker.achievement_progress(definition, profile, await self._lesson_totals(user_id))
        return {"achievementId": achievement_id, "progress": progress}

    async def award_achievement(self, user_id: str, achievement_id: str) -> dict:
        definition = await self.store.get_achievement(achievement_id)
        if not definition:
            raise ProgressNotFoundError("Achievement not found", {"achievement_id": achievement_id})
        now = self.clock()

        def mutate(profile):
            achievements = profile.setdefault("achievements", [])
            owned = next((a for a in achievements if a["achievement_id"] == achievement_id), None)
            if owned and owned["is_completed"]:
                raise ProgressStateError(
                    "User already has this achievement",
                    {"user_id": user_id, "achievement_id": achievement_id}
                )
            if owned is None:
                owned = tracker.new_user_achievement(definition, now)
                achievements.append(owned)
            tracker.mark_achieved(profile, owned, now, self.recent_limit)
            return True, owned

        _, awarded = await self._update_profile(user_id, mutate)
        logger.info("Awarded %s to user %s", achievement_id, user_id)
        return format_user_achievement(awarded)

    async def set_user_achievements(self, user_id: str, level: str) -> int:
        """
        Reset a learner's achievements for one level to the current catalogue.
        Already earned achievements of that level are kept.
        """
        definitions = await self.store.list_achievements(level)
        if not definitions:
            raise ProgressNotFoundError(f"No achievements found for level {level}", {"level": level})
        totals = await self._lesson_totals(user_id)
        now = self.clock()

        def mutate(profile):
            _replace_level_achievements(profile, level, definitions, now)
            tracker.refresh_achievements(profile, totals, now, self.recent_limit)
            return True, len(definitions)

        _, count = await self._update_profile(user_id, mutate)
        logger.info("Set %d %s achievements for user %s", count, level, user_id)
        return count

    async def _assign_level_achievements(self, user_id: str, level: str):
        """Give a learner the level's achievements the first time they enroll at that level"""
        definitions = await self._catalogue(level)
        totals = await self._lesson_totals(user_id)
        now = self.clock()

        def mutate(profile):
            if any(a["level"] == level for a in profile.get("achievements", [])):
                return False, 0
            _replace_level_achievements(profile, level, definitions, now)
            tracker.refresh_achievements(profile, totals, now, self.recent_limit)
            return True, len(definitions)

        _, assigned = await self._update_profile(user_id, mutate)
        if assigned:
            logger.info("Assigned %d %s achievements to user %s", assigned, level, user_id)


def _replace_level_achievements(profile: dict, level: str, definitions: List[dict], now: datetime):
    kept = [
        a for a in profile.get("achievements", [])
        if a["level"] != level or a["is_completed"]
    ]
    earned = {a["achievement_id"] for a in kept}
    kept.extend(
        tracker.new_user_achievement(definition, now)
        for definition in definitions
        if definition["achievement_id"] not in earned
    )
    profile["achievements"] = kept
