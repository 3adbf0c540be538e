import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from motor.motor_asyncio import AsyncIOMotorClient

from app.classes.class_router import router as class_router
from app.classes.database import LiveClassStore
from app.config import (
    AUDIO_UPLOAD_DIR,
    AUDIO_URL_PREFIX,
    CORS_ORIGINS,
    HOST_DISCONNECT_GRACE_SECONDS,
    MONGO_DB_NAME,
    MONGO_URL,
    VERSION,
)
from app.live.audio_storage import AudioStorage
from app.live.coordinator import SessionCoordinator
from app.live.router import router as live_router
from app.progress.achievement_router import router as achievement_router
from app.progress.database import ProgressStore
from app.progress.progress_router import router as progress_router
from app.study_groups.router import router as study_group_router
from app.system.logger import configure_logging, get_logger

configure_logging()
logger = get_logger(__name__)

app = FastAPI(title="Upskill Live Classes")

# MongoDB Configuration
client = AsyncIOMotorClient(MONGO_URL)
db = client[MONGO_DB_NAME]

audio_storage = AudioStorage(AUDIO_UPLOAD_DIR, AUDIO_URL_PREFIX)
audio_storage.ensure_dir()

# One coordinator per process; presence is not shared across workers
coordinator = SessionCoordinator(
    LiveClassStore(db),
    audio_storage,
    host_grace_seconds=HOST_DISCONNECT_GRACE_SECONDS,
)


@app.on_event("startup")
async def startup_event():
    await LiveClassStore(db).create_indexes()
    await ProgressStore(db).create_indexes()
    logger.info("Live class service started (pid %s)", os.getpid())


@app.on_event("shutdown")
async def shutdown_event():
    await coordinator.close()
    client.close()


app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


# ==================== ROUTER REGISTRATION ====================
app.include_router(class_router)
app.include_router(study_group_router)
app.include_router(live_router)
app.include_router(progress_router)
app.include_router(achievement_router)
app.mount(AUDIO_URL_PREFIX, StaticFiles(directory=AUDIO_UPLOAD_DIR), name="audio")
# ============================================================


@app.get("/version")
def get_version():
    return {"version": VERSION or "unknown", "status": "stable"}


@app.get("/health")
def health():
    return {"status": "ok", "live_connections": len(coordinator.registry)}
