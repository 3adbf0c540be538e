import asyncio
import base64
import binascii
import os
import re
import uuid

from app.live.errors import PayloadValidationError, PersistenceError
from app.system.logger import get_logger

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


class AudioStorage:
    """
    Writes recorded chat audio to disk and hands back the public URL path.
    Chat records keep only that path, never the raw bytes.
    """

    def __init__(self, root_dir: str, url_prefix: str = "/uploads/audio"):
        self.root_dir = root_dir
        self.url_prefix = url_prefix.rstrip("/")

    def ensure_dir(self):
        os.makedirs(self.root_dir, mode=0o755, exist_ok=True)

    @staticmethod
    def decode(encoded: str) -> bytes:
        # Browsers send "data:audio/wav;base64,<payload>"
        payload = encoded.split(";base64,")[-1].strip()
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise PayloadValidationError("Audio content is not valid base64") from e
        if not raw:
            raise PayloadValidationError("Audio content is empty")
        return raw

    def _write(self, filename: str, raw: bytes):
        self.ensure_dir()
        path = os.path.join(self.root_dir, filename)
        with open(path, "wb") as f:
            f.write(raw)
        os.chmod(path, 0o644)

    async def save(self, encoded: str, user_id: str) -> str:
        raw = self.decode(encoded)
        safe_user = _UNSAFE_CHARS.sub("_", user_id)[:64] or "anonymous"
        filename = f"audio_{safe_user}_{uuid.uuid4().hex}.wav"

        try:
            await asyncio.to_thread(self._write, filename, raw)
        except OSError as e:
            raise PersistenceError("Failed to store audio file", {"error": str(e)}) from e

        logger.debug("Stored audio clip %s (%d bytes)", filename, len(raw))
        return f"{self.url_prefix}/{filename}"

    def _remove(self, filename: str):
        try:
            os.remove(os.path.join(self.root_dir, filename))
        except FileNotFoundError:
            pass

    async def discard(self, url: str):
        """Delete a clip previously returned by save(), e.g. when its chat record was never written"""
        filename = os.path.basename(url)
        try:
            await asyncio.to_thread(self._remove, filename)
        except OSError:
            logger.warning("Could not remove orphaned audio clip %s", filename, exc_info=True)
        else:
            logger.debug("Removed orphaned audio clip %s", filename)
