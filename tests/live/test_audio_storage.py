import base64
import os

import pytest

from app.live.audio_storage import AudioStorage
from app.live.errors import PayloadValidationError, PersistenceError

CLIP = b"RIFF\x24\x00\x00\x00WAVEfmt "


def encoded(raw: bytes = CLIP, data_url: bool = True) -> str:
    body = base64.b64encode(raw).decode()
    return f"data:audio/wav;base64,{body}" if data_url else body


class TestDecode:
    def test_data_url(self):
        assert AudioStorage.decode(encoded()) == CLIP

    def test_plain_base64(self):
        assert AudioStorage.decode(encoded(data_url=False)) == CLIP

    @pytest.mark.parametrize("value", ["not base64!!", "data:audio/wav;base64,", ""])
    def test_invalid(self, value):
        with pytest.raises(PayloadValidationError):
            AudioStorage.decode(value)


class TestSave:
    async def test_writes_file_and_returns_public_path(self, audio_storage):
        url = await audio_storage.save(encoded(), "u1")

        assert url.startswith("/uploads/audio/audio_u1_")
        assert url.endswith(".wav")
        path = os.path.join(audio_storage.root_dir, url.rsplit("/", 1)[1])
        with open(path, "rb") as f:
            assert f.read() == CLIP

    async def test_user_id_is_sanitized(self, audio_storage):
        url = await audio_storage.save(encoded(), "../../etc/passwd")
        filename = url.rsplit("/", 1)[1]
        assert "/" not in filename and ".." not in filename
        assert os.path.exists(os.path.join(audio_storage.root_dir, filename))

    async def test_each_clip_gets_its_own_file(self, audio_storage):
        first = await audio_storage.save(encoded(), "u1")
        second = await audio_storage.save(encoded(), "u1")
        assert first != second

    async def test_write_failure_is_persistence_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        storage = AudioStorage(str(blocker / "audio"))

        with pytest.raises(PersistenceError):
            await storage.save(encoded(), "u1")


class TestDiscard:
    async def test_removes_saved_clip(self, audio_storage):
        url = await audio_storage.save(encoded(), "u1")

        await audio_storage.discard(url)

        assert not os.path.exists(os.path.join(audio_storage.root_dir, url.rsplit("/", 1)[1]))

    async def test_missing_clip_is_ignored(self, audio_storage):
        await audio_storage.discard("/uploads/audio/audio_u1_gone.wav")
