"""
Live Class Service Configuration
Database, auth, live session and progress settings
"""

import os

# MongoDB
MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "upskill_lms")

# Auth (shared secret with the auth service)
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "upskill_dev_secret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

# Audio messages
AUDIO_UPLOAD_DIR = os.getenv("AUDIO_UPLOAD_DIR", os.path.join("public", "uploads", "audio"))
AUDIO_URL_PREFIX = os.getenv("AUDIO_URL_PREFIX", "/uploads/audio")

# Live sessions
CHAT_HISTORY_LIMIT = int(os.getenv("CHAT_HISTORY_LIMIT", "100"))
# 0 ends the class as soon as the host's socket drops
HOST_DISCONNECT_GRACE_SECONDS = float(os.getenv("HOST_DISCONNECT_GRACE_SECONDS", "0"))

# Progress tracking
# Attempts before a lost version check becomes a 409
PROGRESS_WRITE_RETRIES = int(os.getenv("PROGRESS_WRITE_RETRIES", "3"))
RECENT_ACHIEVEMENTS_LIMIT = int(os.getenv("RECENT_ACHIEVEMENTS_LIMIT", "10"))
ACTIVITY_WINDOW_DAYS = int(os.getenv("ACTIVITY_WINDOW_DAYS", "30"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
VERSION = os.getenv("VERSION")
