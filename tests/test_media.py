from __future__ import annotations

import asyncio
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

from groupkeeper_bot.config import MediaSettings
from groupkeeper_bot.media.normalizer import MediaNormalizer
from tests.factories import make_image


class ScriptedNormalizer(MediaNormalizer):
    """Replaces the ffmpeg call with a script of per-offset outcomes."""

    def __init__(self, settings: MediaSettings, outcomes: dict[str, bool], *, delay: float = 0.0) -> None:
        super().__init__(settings)
        self.outcomes = outcomes
        self.delay = delay
        self.offsets: list[str] = []
        self.workdirs: list[Path] = []

    async def _run_ffmpeg(self, video_path: Path, frame_path: Path, offset: str) -> bool:
        self.offsets.append(offset)
        self.workdirs.append(video_path.parent)
        assert video_path.read_bytes() == b"fake-video"
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.outcomes.get(offset):
            frame_path.write_bytes(f"frame@{offset}".encode())
            return True
        return False


def leftover_workdirs(root: Path) -> list[Path]:
    return [path for path in root.iterdir() if path.name.startswith("groupkeeper-")]


@pytest.mark.asyncio
async def test_normalize_image_fits_bounding_box_and_keeps_aspect() -> None:
    normalizer = MediaNormalizer(MediaSettings(max_dimension=512))
    result = await normalizer.normalize_image(make_image((1024, 768)))

    with Image.open(BytesIO(result)) as image:
        assert image.format == "JPEG"
        assert image.size == (512, 384)


@pytest.mark.asyncio
async def test_normalize_image_converts_alpha_to_rgb() -> None:
    normalizer = MediaNormalizer()
    source = BytesIO()
    Image.new("RGBA", (64, 64), (10, 20, 30, 128)).save(source, format="PNG")

    result = await normalizer.normalize_image(source.getvalue())

    with Image.open(BytesIO(result)) as image:
        assert image.mode == "RGB"
        assert image.size == (64, 64)


@pytest.mark.asyncio
async def test_normalize_image_returns_original_on_decode_failure() -> None:
    normalizer = MediaNormalizer()
    garbage = b"definitely not an image"
    assert await normalizer.normalize_image(garbage) == garbage


@pytest.mark.asyncio
async def test_extract_frame_uses_primary_offset_and_cleans_up(tmp_path) -> None:
    settings = MediaSettings(temp_dir=str(tmp_path))
    normalizer = ScriptedNormalizer(settings, {"00:00:01": True})

    frame = await normalizer.extract_frame(b"fake-video")

    assert frame == b"frame@00:00:01"
    assert normalizer.offsets == ["00:00:01"]
    assert leftover_workdirs(tmp_path) == []


@pytest.mark.asyncio
async def test_extract_frame_retries_at_fallback_offset(tmp_path) -> None:
    settings = MediaSettings(temp_dir=str(tmp_path))
    normalizer = ScriptedNormalizer(settings, {"00:00:00.5": True})

    frame = await normalizer.extract_frame(b"fake-video")

    assert frame == b"frame@00:00:00.5"
    assert normalizer.offsets == ["00:00:01", "00:00:00.5"]
    assert leftover_workdirs(tmp_path) == []


@pytest.mark.asyncio
async def test_extract_frame_returns_none_when_both_attempts_fail(tmp_path) -> None:
    settings = MediaSettings(temp_dir=str(tmp_path))
    normalizer = ScriptedNormalizer(settings, {})

    assert await normalizer.extract_frame(b"fake-video") is None
    assert normalizer.offsets == ["00:00:01", "00:00:00.5"]
    assert leftover_workdirs(tmp_path) == []


@pytest.mark.asyncio
async def test_extract_frame_timeout_returns_none_and_cleans_up(tmp_path) -> None:
    settings = MediaSettings(temp_dir=str(tmp_path), frame_timeout_seconds=0.05)
    normalizer = ScriptedNormalizer(settings, {"00:00:01": True}, delay=5.0)

    assert await normalizer.extract_frame(b"fake-video") is None
    assert normalizer.offsets == ["00:00:01"]
    assert all(not path.exists() for path in normalizer.workdirs)
    assert leftover_workdirs(tmp_path) == []


@pytest.mark.asyncio
async def test_extract_frame_rejects_empty_input(tmp_path) -> None:
    normalizer = ScriptedNormalizer(MediaSettings(temp_dir=str(tmp_path)), {"00:00:01": True})
    assert await normalizer.extract_frame(b"") is None
    assert normalizer.offsets == []


@pytest.mark.asyncio
async def test_missing_ffmpeg_binary_is_a_failed_attempt(tmp_path) -> None:
    settings = MediaSettings(temp_dir=str(tmp_path), ffmpeg_binary=str(tmp_path / "no-such-ffmpeg"))
    normalizer = MediaNormalizer(settings)

    assert await normalizer.extract_frame(b"fake-video") is None
    assert leftover_workdirs(tmp_path) == []


class ClipSizeNormalizer(MediaNormalizer):
    def __init__(self, settings: MediaSettings) -> None:
        super().__init__(settings)
        self.clip_sizes: list[int] = []

    async def _run_ffmpeg(self, video_path: Path, frame_path: Path, offset: str) -> bool:
        self.clip_sizes.append(video_path.stat().st_size)
        await asyncio.sleep(5.0)
        return False


@pytest.mark.asyncio
async def test_clip_is_fully_written_before_the_extraction_timeout_starts(tmp_path) -> None:
    clip = b"\x00" * (8 * 1024 * 1024)
    normalizer = ClipSizeNormalizer(MediaSettings(temp_dir=str(tmp_path), frame_timeout_seconds=0.001))

    assert await normalizer.extract_frame(clip) is None
    assert normalizer.clip_sizes == [len(clip)]
    assert leftover_workdirs(tmp_path) == []
