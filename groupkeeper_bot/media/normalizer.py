from __future__ import annotations

import asyncio
import tempfile
from io import BytesIO
from pathlib import Path
from typing import Optional

import structlog
from PIL import Image

from ..config import MediaSettings
from ..utils.concurrency import run_blocking

logger = structlog.get_logger(__name__)


class MediaNormalizer:
    """Turns inbound images and videos into one bounded still image for classification."""

    def __init__(self, settings: Optional[MediaSettings] = None) -> None:
        settings = settings or MediaSettings()
        self._max_dimension = settings.max_dimension
        self._quality = settings.jpeg_quality
        self._ffmpeg = settings.ffmpeg_binary
        self._offsets = (settings.primary_frame_offset, settings.fallback_frame_offset)
        self._frame_timeout = settings.frame_timeout_seconds
        self._temp_dir = settings.temp_dir

    async def normalize_image(self, data: bytes) -> bytes:
        try:
            resized = await run_blocking(self._resize, data)
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            logger.warning("image_normalize_failed", error=str(exc), size=len(data))
            return data
        logger.debug("image_normalized", original_size=len(data), size=len(resized))
        return resized

    def _resize(self, data: bytes) -> bytes:
        with Image.open(BytesIO(data)) as image:
            image.thumbnail((self._max_dimension, self._max_dimension))
            if image.mode != "RGB":
                image = image.convert("RGB")
            buffer = BytesIO()
            image.save(buffer, format="JPEG", quality=self._quality)
        return buffer.getvalue()

    async def extract_frame(self, video: bytes) -> Optional[bytes]:
        """
        Extract a single still frame from ``video``.

        Tries the primary offset, then the fallback offset, both under one
        wall-clock limit. Returns None when no frame could be produced. The
        working directory is removed on every exit path, including timeouts.
        """
        if not video:
            logger.error("frame_extraction_empty_input")
            return None
        with tempfile.TemporaryDirectory(
            prefix="groupkeeper-", dir=self._temp_dir, ignore_cleanup_errors=True
        ) as workdir:
            video_path = Path(workdir) / "clip.mp4"
            frame_path = Path(workdir) / "frame.jpg"
            try:
                await run_blocking(video_path.write_bytes, video)
                async with asyncio.timeout(self._frame_timeout):
                    for offset in self._offsets:
                        frame_path.unlink(missing_ok=True)
                        if await self._run_ffmpeg(video_path, frame_path, offset):
                            frame = await run_blocking(frame_path.read_bytes)
                            logger.debug("frame_extracted", offset=offset, size=len(frame))
                            return frame
                        logger.warning("frame_extraction_attempt_failed", offset=offset)
            except TimeoutError:
                logger.error("frame_extraction_timeout", timeout=self._frame_timeout)
                return None
            except OSError as exc:
                logger.error("frame_extraction_io_error", error=str(exc))
                return None
        logger.error("frame_extraction_failed", offsets=list(self._offsets))
        return None

    async def _run_ffmpeg(self, video_path: Path, frame_path: Path, offset: str) -> bool:
        try:
            process = await asyncio.create_subprocess_exec(
                self._ffmpeg,
                "-y",
                "-loglevel",
                "error",
                "-ss",
                offset,
                "-i",
                str(video_path),
                "-frames:v",
                "1",
                str(frame_path),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.error("ffmpeg_launch_failed", binary=self._ffmpeg, error=str(exc))
            return False
        try:
            _, stderr = await process.communicate()
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise
        if process.returncode != 0:
            logger.warning(
                "ffmpeg_failed",
                offset=offset,
                returncode=process.returncode,
                stderr=(stderr or b"").decode(errors="replace")[:200],
            )
            return False
        return frame_path.exists() and frame_path.stat().st_size > 0
