"""ffmpeg MJPEG preview transcoder adapter."""

import asyncio
from typing import AsyncIterator, List, Optional
from ..ports.preview_source_port import PreviewSourcePort
from ..services.logging_service import LoggingService


JPEG_START = b"\xff\xd8"
JPEG_END = b"\xff\xd9"
READ_CHUNK = 64 * 1024


def split_jpeg_frames(buffer: bytes) -> "tuple[List[bytes], bytes]":
    """Cut complete JPEG frames out of a byte buffer.
    
    Returns the frames and the unconsumed remainder.
    """
    frames = []
    while True:
        start = buffer.find(JPEG_START)
        if start == -1:
            return frames, b""
        end = buffer.find(JPEG_END, start + 2)
        if end == -1:
            return frames, buffer[start:]
        frames.append(buffer[start:end + 2])
        buffer = buffer[end + 2:]


class FfmpegPreviewAdapter(PreviewSourcePort):
    """One ffmpeg process per preview consumer, MJPEG on stdout."""
    
    def __init__(self, logger: LoggingService, executable: str = "ffmpeg"):
        self.logger = logger
        self.executable = executable
        self._process: Optional[asyncio.subprocess.Process] = None
    
    async def open(self, device_path: str, width: int, height: int, framerate: int) -> None:
        argv = [
            self.executable,
            "-loglevel", "error",
            "-f", "v4l2",
            "-input_format", "mjpeg",
            "-video_size", f"{width}x{height}",
            "-framerate", str(framerate),
            "-i", device_path,
            "-f", "mjpeg",
            "-q:v", "5",
            "pipe:1",
        ]
        self._process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        self.logger.info(f"[Preview] ffmpeg started (pid {self._process.pid}) on {device_path}")
    
    async def frames(self) -> AsyncIterator[bytes]:
        if self._process is None or self._process.stdout is None:
            return
        buffer = b""
        while True:
            chunk = await self._process.stdout.read(READ_CHUNK)
            if not chunk:
                break
            frames, buffer = split_jpeg_frames(buffer + chunk)
            for frame in frames:
                yield frame
    
    async def close(self) -> None:
        process, self._process = self._process, None
        if process is None or process.returncode is not None:
            return
        process.kill()
        code = await process.wait()
        self.logger.info(f"[Preview] ffmpeg exited with code {code}")
