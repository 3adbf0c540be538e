"""
Built-in achievement definitions and display helpers.
"""

from typing import List

from app.progress.models import AchievementCategory, RequirementType

LESSON_CATEGORIES = [
    (AchievementCategory.VOCABULARY, "Vocabulary Master", "📝"),
    (AchievementCategory.GRAMMAR, "Grammar Master", "✍️"),
    (AchievementCategory.READING, "Reading Master", "📖"),
    (AchievementCategory.SPEAKING, "Speaking Master", "🗣️"),
    (AchievementCategory.WRITING, "Writing Master", "✏️"),
    (AchievementCategory.LISTENING, "Listening Master", "👂"),
]

LESSONS_PER_CATEGORY = 3
STREAK_DAYS = 30

ICON_COLORS = {
    "vocabulary": "blue",
    "grammar": "green",
    "reading": "yellow",
    "speaking": "red",
    "writing": "purple",
    "streak": "yellow",
    "general": "blue",
}


def icon_color(category: str) -> str:
    return ICON_COLORS.get(category, "blue")


def default_achievements(level: str) -> List[dict]:
    """One lesson achievement per skill plus a streak achievement for a JLPT level"""
    prefix = level.lower()
    definitions = [
        {
            "achievement_id": f"{prefix}_{category.value}",
            "title": title,
            "description": f"Complete all {level} {category.value} lessons",
            "category": category.value,
            "level": level,
            "requirements": {"type": RequirementType.LESSON_COMPLETION.value, "value": LESSONS_PER_CATEGORY},
            "icon": icon,
            "xp_reward": 200,
        }
        for category, title, icon in LESSON_CATEGORIES
    ]
    definitions.append({
        "achievement_id": f"{prefix}_streak",
        "title": "Streak Master",
        "description": f"Maintain a {STREAK_DAYS}-day study streak",
        "category": AchievementCategory.STREAK.value,
        "level": level,
        "requirements": {"type": RequirementType.STREAK.value, "value": STREAK_DAYS},
        "icon": "🌟",
        "xp_reward": 500,
    })
    return definitions


N5_ACHIEVEMENTS = default_achievements("N5")
