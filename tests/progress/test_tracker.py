from collections import Counter
from datetime import datetime, timedelta

import pytest

from app.progress import tracker
from app.progress.catalogue import default_achievements
from app.progress.errors import ProgressNotFoundError

from conftest import sample_modules

NOW = datetime(2024, 5, 1, 9, 30)


@pytest.fixture
def course():
    return {"course_id": "C1", "level": "N5", "modules": sample_modules()}


@pytest.fixture
def enrollment(course):
    return {
        "user_id": "u1",
        "course_id": "C1",
        "level": "N5",
        "module_progress": tracker.initial_module_progress(course),
        "overall_progress": 0.0,
        "next_lesson": None,
    }


def _profile(**fields):
    profile = {"streak": 0, "longest_streak": 0, "last_access": None,
               "daily_activity": [], "achievements": [], "recent_achievements": []}
    profile.update(fields)
    return profile


class TestLessonStatus:
    def test_completion_recomputes_module_and_course(self, enrollment, course):
        assert tracker.apply_lesson_status(enrollment, course, "m1", "l1", True) is True

        m1, m2 = enrollment["module_progress"]
        assert m1["completed_lessons"] == ["l1"]
        assert m1["progress"] == 33.33
        assert m2["progress"] == 0.0
        assert enrollment["overall_progress"] == 20.0

    def test_completing_twice_changes_nothing(self, enrollment, course):
        tracker.apply_lesson_status(enrollment, course, "m1", "l1", True)

        assert tracker.apply_lesson_status(enrollment, course, "m1", "l1", True) is False
        assert enrollment["module_progress"][0]["completed_lessons"] == ["l1"]

    def test_uncompleting_drops_the_lesson(self, enrollment, course):
        tracker.apply_lesson_status(enrollment, course, "m1", "l1", True)
        tracker.apply_lesson_status(enrollment, course, "m1", "l2", True)

        assert tracker.apply_lesson_status(enrollment, course, "m1", "l1", False) is True
        assert enrollment["module_progress"][0]["completed_lessons"] == ["l2"]
        assert enrollment["overall_progress"] == 20.0

    def test_next_lesson_within_module(self, enrollment, course):
        tracker.apply_lesson_status(enrollment, course, "m1", "l1", True)
        assert enrollment["next_lesson"] == {"module_id": "m1", "lesson_id": "l2"}

    def test_next_lesson_rolls_into_next_module(self, enrollment, course):
        tracker.apply_lesson_status(enrollment, course, "m1", "l3", True)
        assert enrollment["next_lesson"] == {"module_id": "m2", "lesson_id": "l4"}

    def test_last_lesson_clears_next_lesson(self, enrollment, course):
        enrollment["next_lesson"] = {"module_id": "m2", "lesson_id": "l5"}
        tracker.apply_lesson_status(enrollment, course, "m2", "l5", True)
        assert enrollment["next_lesson"] is None

    def test_full_course_is_one_hundred(self, enrollment, course):
        for module in course["modules"]:
            for lesson in module["lessons"]:
                tracker.apply_lesson_status(enrollment, course, module["id"], lesson["id"], True)

        assert enrollment["overall_progress"] == 100.0
        assert [m["progress"] for m in enrollment["module_progress"]] == [100.0, 100.0]

    def test_module_added_after_enrollment(self, enrollment, course):
        course["modules"].append({"id": "m3", "title": "Extra", "lessons": [
            {"id": "l6", "title": "Kanji", "type": "writing", "duration": 5},
        ]})

        tracker.apply_lesson_status(enrollment, course, "m3", "l6", True)

        assert enrollment["module_progress"][-1] == {"module_id": "m3", "progress": 100.0, "completed_lessons": ["l6"]}
        assert enrollment["overall_progress"] == pytest.approx(16.67)

    def test_empty_module_does_not_divide_by_zero(self, enrollment, course):
        course["modules"].append({"id": "m3", "title": "Soon", "lessons": []})
        tracker.recompute_course_progress(enrollment, course)
        assert enrollment["overall_progress"] == 0.0

    @pytest.mark.parametrize("module_id,lesson_id,message", [
        ("nope", "l1", "Module not found"),
        ("m1", "l5", "Lesson not found"),
    ])
    def test_unknown_module_or_lesson(self, enrollment, course, module_id, lesson_id, message):
        with pytest.raises(ProgressNotFoundError, match=message):
            tracker.apply_lesson_status(enrollment, course, module_id, lesson_id, True)


class TestTotals:
    def test_completed_lessons_counted_per_level_and_type(self, enrollment, course):
        for lesson_id in ("l1", "l2", "l3"):
            tracker.apply_lesson_status(enrollment, course, "m1", lesson_id, True)

        totals = tracker.completed_lesson_totals([enrollment], {"C1": course})

        assert totals == Counter({("N5", "vocabulary"): 2, ("N5", "grammar"): 1})

    def test_enrollment_for_deleted_course_is_skipped(self, enrollment):
        assert tracker.completed_lesson_totals([enrollment], {}) == Counter()

    def test_skill_breakdown(self, enrollment, course):
        tracker.apply_lesson_status(enrollment, course, "m1", "l1", True)
        tracker.apply_lesson_status(enrollment, course, "m1", "l3", True)

        skills = tracker.skill_breakdown([enrollment], {"C1": course})

        assert skills["vocabulary"] == 33.33
        assert skills["grammar"] == 100.0
        assert skills["reading"] == 0.0
        assert skills["writing"] == 0.0


class TestStreak:
    def test_first_visit(self):
        profile = _profile()

        assert tracker.advance_streak(profile, NOW) is True
        assert (profile["streak"], profile["longest_streak"]) == (1, 1)
        assert profile["last_access"] == datetime(2024, 5, 1)

    def test_same_day_is_counted_once(self):
        profile = _profile(streak=4, longest_streak=4, last_access=datetime(2024, 5, 1))

        assert tracker.advance_streak(profile, NOW + timedelta(hours=10)) is False
        assert profile["streak"] == 4

    def test_consecutive_day_extends(self):
        profile = _profile(streak=4, longest_streak=6, last_access=datetime(2024, 4, 30))

        tracker.advance_streak(profile, NOW)

        assert (profile["streak"], profile["longest_streak"]) == (5, 6)

    def test_gap_resets_but_keeps_best(self):
        profile = _profile(streak=9, longest_streak=9, last_access=datetime(2024, 4, 28))

        tracker.advance_streak(profile, NOW)

        assert (profile["streak"], profile["longest_streak"]) == (1, 9)

    def test_just_after_midnight_still_consecutive(self):
        profile = _profile(streak=2, longest_streak=2, last_access=datetime(2024, 4, 30))

        tracker.advance_streak(profile, datetime(2024, 5, 1, 0, 1))

        assert profile["streak"] == 3


class TestActivity:
    def test_counters_accumulate_on_today(self):
        profile = _profile()

        tracker.record_activity(profile, NOW, 30, lessons_completed=1, time_spent=10)
        tracker.record_activity(profile, NOW + timedelta(hours=2), 30, goals_completed=2, time_spent=5)

        assert profile["daily_activity"] == [{
            "date": datetime(2024, 5, 1),
            "goals_completed": 2,
            "lessons_completed": 1,
            "practice_completed": 0,
            "total_time_spent": 15,
        }]

    def test_window_drops_old_days_newest_first(self):
        profile = _profile(daily_activity=[
            {"date": datetime(2024, 3, 1), "goals_completed": 0, "lessons_completed": 1,
             "practice_completed": 0, "total_time_spent": 10},
            {"date": datetime(2024, 4, 20), "goals_completed": 0, "lessons_completed": 1,
             "practice_completed": 0, "total_time_spent": 10},
        ])

        tracker.record_activity(profile, NOW, 30, lessons_completed=1)

        assert [a["date"] for a in profile["daily_activity"]] == [datetime(2024, 5, 1), datetime(2024, 4, 20)]


class TestAchievements:
    def _owned(self, level="N5"):
        return [tracker.new_user_achievement(d, NOW) for d in default_achievements(level)]

    def test_partial_progress(self):
        profile = _profile(achievements=self._owned())

        unlocked = tracker.refresh_achievements(profile, Counter({("N5", "vocabulary"): 2}), NOW, 10)

        vocab = next(a for a in profile["achievements"] if a["achievement_id"] == "n5_vocabulary")
        assert unlocked == []
        assert vocab["current_progress"] == 66.67
        assert vocab["is_completed"] is False

    def test_other_level_lessons_do_not_count(self):
        profile = _profile(achievements=self._owned())

        tracker.refresh_achievements(profile, Counter({("N4", "vocabulary"): 5}), NOW, 10)

        vocab = next(a for a in profile["achievements"] if a["achievement_id"] == "n5_vocabulary")
        assert vocab["current_progress"] == 0.0

    def test_unlock_goes_to_front_of_recent(self):
        profile = _profile(achievements=self._owned(), recent_achievements=[
            {"achievement_id": "older", "title": "t", "description": "d", "category": "general",
             "level": "N5", "icon": "x", "completed_at": NOW - timedelta(days=1)},
        ])

        unlocked = tracker.refresh_achievements(profile, Counter({("N5", "grammar"): 3}), NOW, 10)

        assert [a["achievement_id"] for a in unlocked] == ["n5_grammar"]
        assert unlocked[0]["is_completed"] is True
        assert unlocked[0]["completed_at"] == NOW
        assert [r["achievement_id"] for r in profile["recent_achievements"]] == ["n5_grammar", "older"]

    def test_recent_list_is_capped(self):
        profile = _profile(achievements=self._owned())

        tracker.refresh_achievements(
            profile,
            Counter({("N5", kind): 3 for kind in ("vocabulary", "grammar", "reading", "writing", "listening")}),
            NOW,
            recent_limit=2,
        )

        assert len(profile["recent_achievements"]) == 2

    def test_streak_requirement(self):
        profile = _profile(streak=15, achievements=self._owned())

        tracker.refresh_achievements(profile, Counter(), NOW, 10)

        streak = next(a for a in profile["achievements"] if a["achievement_id"] == "n5_streak")
        assert streak["current_progress"] == 50.0

    def test_completed_achievement_is_never_reopened(self):
        profile = _profile(achievements=self._owned())
        tracker.refresh_achievements(profile, Counter({("N5", "grammar"): 3}), NOW, 10)

        again = tracker.refresh_achievements(profile, Counter(), NOW + timedelta(days=1), 10)

        grammar = next(a for a in profile["achievements"] if a["achievement_id"] == "n5_grammar")
        assert again == []
        assert grammar["current_progress"] == 100.0
        assert grammar["completed_at"] == NOW

    def test_time_spent_counts_hours(self):
        achievement = {"level": "N5", "category": "general",
                       "requirements": {"type": "time_spent", "value": 2}}
        profile = _profile(daily_activity=[
            {"date": NOW, "goals_completed": 0, "lessons_completed": 0,
             "practice_completed": 0, "total_time_spent": 60},
        ])

        assert tracker.achievement_progress(achievement, profile, Counter()) == 50.0

    def test_untracked_requirement_is_zero(self):
        achievement = {"level": "N5", "category": "general",
                       "requirements": {"type": "quiz_score", "value": 80}}
        assert tracker.achievement_progress(achievement, _profile(), Counter()) == 0.0
