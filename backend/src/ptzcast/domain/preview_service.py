"""Live MJPEG preview of the camera, mutually exclusive with the outbound stream."""

from typing import AsyncIterator, Callable
from .resource_arbiter import ResourceArbiter
from .results import ErrorCode, OperationResult
from .stream_supervisor import StreamSupervisor
from ..ports.preview_source_port import PreviewSourcePort
from ..services.logging_service import LoggingService


class PreviewService:
    """Hands out preview sessions; each session owns one transcoder process."""

    def __init__(
        self,
        device_path: str,
        source_factory: Callable[[], PreviewSourcePort],
        arbiter: ResourceArbiter,
        supervisor: StreamSupervisor,
        logger: LoggingService,
        width: int = 1280,
        height: int = 720,
        framerate: int = 30,
    ):
        self.device_path = device_path
        self.source_factory = source_factory
        self.arbiter = arbiter
        self.supervisor = supervisor
        self.logger = logger
        self.width = width
        self.height = height
        self.framerate = framerate

    def check_available(self) -> OperationResult:
        if self.supervisor.is_active:
            return OperationResult.fail(
                ErrorCode.DEVICE_BUSY, "Camera is in use by the outbound stream; stop the stream to preview"
            )
        return OperationResult.ok()

    async def frames(self) -> AsyncIterator[bytes]:
        """Evict the current device holder, start a transcoder and yield JPEG frames.

        The transcoder is closed when the consumer stops iterating.
        """
        if not self.check_available().success:
            return
        await self.arbiter.free_device(self.device_path)
        source = self.source_factory()
        try:
            await source.open(self.device_path, self.width, self.height, self.framerate)
        except OSError as e:
            self.logger.error(f"[Preview] Failed to start preview transcoder: {e}")
            return
        try:
            async for frame in source.frames():
                yield frame
        finally:
            await source.close()
