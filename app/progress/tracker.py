"""
Progress bookkeeping on plain enrollment / profile documents.

Nothing here touches the database. The service loads the documents,
mutates them with these helpers and writes them back under a version check.

    enrollment.module_progress[i] = {module_id, progress, completed_lessons}
    enrollment.overall_progress   = completed lessons / lessons in course * 100
    profile.achievements[i]       = catalogue entry + current_progress, is_completed
"""

from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from app.progress.errors import ProgressNotFoundError
from app.progress.models import LessonType, RequirementType

SKILL_TYPES = [
    LessonType.VOCABULARY.value,
    LessonType.GRAMMAR.value,
    LessonType.READING.value,
    LessonType.WRITING.value,
    LessonType.LISTENING.value,
]


def _percent(done: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(min(done / total * 100, 100.0), 2)


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)

# ==================== COURSE PROGRESS ====================

def find_module(course: dict, module_id: str) -> Tuple[int, dict]:
    for index, module in enumerate(course.get("modules", [])):
        if module["id"] == module_id:
            return index, module
    raise ProgressNotFoundError("Module not found", {"course_id": course.get("course_id"), "module_id": module_id})


def find_lesson(module: dict, lesson_id: str) -> Tuple[int, dict]:
    for index, lesson in enumerate(module.get("lessons", [])):
        if lesson["id"] == lesson_id:
            return index, lesson
    raise ProgressNotFoundError("Lesson not found", {"module_id": module["id"], "lesson_id": lesson_id})


def initial_module_progress(course: dict) -> List[dict]:
    return [
        {"module_id": module["id"], "progress": 0.0, "completed_lessons": []}
        for module in course.get("modules", [])
    ]


def _module_entry(enrollment: dict, module_id: str) -> dict:
    for entry in enrollment["module_progress"]:
        if entry["module_id"] == module_id:
            return entry
    # Module added to the course after this learner enrolled
    entry = {"module_id": module_id, "progress": 0.0, "completed_lessons": []}
    enrollment["module_progress"].append(entry)
    return entry


def next_lesson_after(course: dict, module_index: int, lesson_index: int) -> Optional[dict]:
    modules = course["modules"]
    lessons = modules[module_index]["lessons"]
    if lesson_index < len(lessons) - 1:
        return {"module_id": modules[module_index]["id"], "lesson_id": lessons[lesson_index + 1]["id"]}
    for module in modules[module_index + 1:]:
        if module.get("lessons"):
            return {"module_id": module["id"], "lesson_id": module["lessons"][0]["id"]}
    return None


def recompute_course_progress(enrollment: dict, course: dict):
    """Refresh every module percentage and the overall percentage from the completed lesson ids"""
    lessons_by_module = {
        module["id"]: {lesson["id"] for lesson in module.get("lessons", [])}
        for module in course.get("modules", [])
    }
    total_lessons = sum(len(ids) for ids in lessons_by_module.values())
    total_done = 0

    for entry in enrollment["module_progress"]:
        known = lessons_by_module.get(entry["module_id"], set())
        done = len([lesson_id for lesson_id in entry["completed_lessons"] if lesson_id in known])
        entry["progress"] = _percent(done, len(known))
        total_done += done

    enrollment["overall_progress"] = _percent(total_done, total_lessons)


def apply_lesson_status(enrollment: dict, course: dict, module_id: str, lesson_id: str, completed: bool) -> bool:
    """
    Mark one lesson done or not done and recompute the course percentages.

    Returns True when the completed set actually changed.
    Raises ProgressNotFoundError for a module or lesson the course does not have.
    """
    module_index, module = find_module(course, module_id)
    lesson_index, _ = find_lesson(module, lesson_id)
    entry = _module_entry(enrollment, module_id)

    changed = False
    if completed and lesson_id not in entry["completed_lessons"]:
        entry["completed_lessons"].append(lesson_id)
        changed = True
    elif not completed and lesson_id in entry["completed_lessons"]:
        entry["completed_lessons"].remove(lesson_id)
        changed = True

    if completed:
        enrollment["next_lesson"] = next_lesson_after(course, module_index, lesson_index)

    recompute_course_progress(enrollment, course)
    return changed


def completed_lesson_totals(enrollments: Iterable[dict], courses: Dict[str, dict]) -> Counter:
    """Completed lessons counted per (course level, lesson type)"""
    totals = Counter()
    for enrollment in enrollments:
        course = courses.get(enrollment["course_id"])
        if not course:
            continue
        lesson_types = {
            module["id"]: {lesson["id"]: lesson["type"] for lesson in module.get("lessons", [])}
            for module in course.get("modules", [])
        }
        for entry in enrollment["module_progress"]:
            types = lesson_types.get(entry["module_id"], {})
            for lesson_id in entry["completed_lessons"]:
                if lesson_id in types:
                    totals[(course["level"], types[lesson_id])] += 1
    return totals


def skill_breakdown(enrollments: Iterable[dict], courses: Dict[str, dict]) -> Dict[str, float]:
    """Share of each lesson type completed across every enrolled course"""
    enrollments = list(enrollments)
    done = Counter()
    available = Counter()
    for (level, lesson_type), count in completed_lesson_totals(enrollments, courses).items():
        done[lesson_type] += count
    for enrollment in enrollments:
        course = courses.get(enrollment["course_id"])
        if not course:
            continue
        for module in course.get("modules", []):
            for lesson in module.get("lessons", []):
                available[lesson["type"]] += 1
    return {skill: _percent(done[skill], available[skill]) for skill in SKILL_TYPES}

# ==================== STREAKS & ACTIVITY ====================

def advance_streak(profile: dict, now: datetime) -> bool:
    """
    Count today's visit towards the streak.
    Returns False when today was already counted.
    """
    today = start_of_day(now)
    last_access = profile.get("last_access")

    if last_access is not None and start_of_day(last_access) == today:
        return False

    if last_access is not None and today - start_of_day(last_access) == timedelta(days=1):
        profile["streak"] = profile.get("streak", 0) + 1
    else:
        profile["streak"] = 1

    profile["longest_streak"] = max(profile.get("longest_streak", 0), profile["streak"])
    profile["last_access"] = today
    return True


def record_activity(
    profile: dict,
    now: datetime,
    window_days: int,
    lessons_completed: int = 0,
    goals_completed: int = 0,
    practice_completed: int = 0,
    time_spent: int = 0,
) -> dict:
    """Add counters to today's activity record, keeping only the last `window_days` days, newest first"""
    today = start_of_day(now)
    activity = profile.setdefault("daily_activity", [])

    record = next((item for item in activity if item["date"] == today), None)
    if record is None:
        record = {
            "date": today,
            "goals_completed": 0,
            "lessons_completed": 0,
            "practice_completed": 0,
            "total_time_spent": 0,
        }
        activity.append(record)

    record["goals_completed"] += goals_completed
    record["lessons_completed"] += lessons_completed
    record["practice_completed"] += practice_completed
    record["total_time_spent"] += time_spent

    cutoff = today - timedelta(days=window_days)
    profile["daily_activity"] = sorted(
        (item for item in activity if item["date"] >= cutoff),
        key=lambda item: item["date"],
        reverse=True,
    )
    return record

# ==================== ACHIEVEMENTS ====================

def new_user_achievement(definition: dict, now: datetime) -> dict:
    return {
        "achievement_id": definition["achievement_id"],
        "title": definition["title"],
        "description": definition["description"],
        "category": definition["category"],
        "level": definition["level"],
        "icon": definition["icon"],
        "xp_reward": definition.get("xp_reward", 0),
        "requirements": dict(definition["requirements"]),
        "current_progress": 0.0,
        "is_completed": False,
        "completed_at": None,
        "assigned_at": now,
        "last_updated": now,
    }


def achievement_progress(achievement: dict, profile: dict, totals: Counter) -> float:
    requirement = achievement["requirements"]
    kind = requirement["type"]
    target = requirement["value"]

    if kind == RequirementType.LESSON_COMPLETION.value:
        return _percent(totals[(achievement["level"], achievement["category"])], target)
    if kind == RequirementType.STREAK.value:
        return _percent(profile.get("streak", 0), target)
    if kind == RequirementType.TIME_SPENT.value:
        minutes = sum(item["total_time_spent"] for item in profile.get("daily_activity", []))
        return _percent(minutes, target * 60)
    # Quiz and practice scores are not tracked yet
    return 0.0


def mark_achieved(profile: dict, achievement: dict, now: datetime, recent_limit: int):
    achievement["current_progress"] = 100.0
    achievement["is_completed"] = True
    achievement["completed_at"] = now
    achievement["last_updated"] = now

    recent = [
        item for item in profile.get("recent_achievements", [])
        if item["achievement_id"] != achievement["achievement_id"]
    ]
    recent.insert(0, {
        "achievement_id": achievement["achievement_id"],
        "title": achievement["title"],
        "description": achievement["description"],
        "category": achievement["category"],
        "level": achievement["level"],
        "icon": achievement["icon"],
        "completed_at": now,
    })
    profile["recent_achievements"] = recent[:recent_limit]


def refresh_achievements(profile: dict, totals: Counter, now: datetime, recent_limit: int) -> List[dict]:
    """
    Recompute progress on every open achievement.
    Completed achievements are never reopened. Returns the ones unlocked by this call.
    """
    unlocked = []
    for achievement in profile.get("achievements", []):
        if achievement["is_completed"]:
            continue
        progress = achievement_progress(achievement, profile, totals)
        if progress != achievement["current_progress"]:
            achievement["current_progress"] = progress
            achievement["last_updated"] = now
        if progress >= 100:
            mark_achieved(profile, achievement, now, recent_limit)
            unlocked.append(achievement)
    return unlocked
