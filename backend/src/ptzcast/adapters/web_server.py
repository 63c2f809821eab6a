"""Web server adapter for ptzcast."""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Set
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect, Body
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse
from pydantic import BaseModel
from ..domain.camera_control import CONTROL_RESULT_TOPIC, DeviceControlClient
from ..domain.preview_service import PreviewService
from ..domain.results import ErrorCode, OperationResult
from ..domain.stream_supervisor import STREAM_TOPICS, StreamSupervisor
from ..services.config_service import ConfigService
from ..services.logging_service import LoggingService
from ..services.message_bus import MessageBus


# Result codes that are the caller's fault or a state conflict, not a device failure
_STATUS_BY_CODE = {
    ErrorCode.UNKNOWN_CONTROL: 400,
    ErrorCode.OUT_OF_RANGE: 400,
    ErrorCode.UNSUPPORTED_PROTOCOL: 400,
    ErrorCode.UNSUPPORTED_ENCODER: 400,
    ErrorCode.MISSING_DESTINATION: 400,
    ErrorCode.ALREADY_RUNNING: 409,
    ErrorCode.NOT_RUNNING: 409,
    ErrorCode.DEVICE_BUSY: 409,
}

EVENT_TOPICS = STREAM_TOPICS + (CONTROL_RESULT_TOPIC,)
EVENT_QUEUE_SIZE = 256


class ControlValue(BaseModel):
    value: int


class Movement(BaseModel):
    degrees: float


class ZoomLevel(BaseModel):
    level: int


def result_response(result: OperationResult) -> JSONResponse:
    """Serialize a service result; failures keep the {success, error} body."""
    status = 200 if result.success else _STATUS_BY_CODE.get(result.code, 200)
    return JSONResponse(status_code=status, content=result.to_dict())


def _payload(message: Any) -> Any:
    return message.to_dict() if hasattr(message, "to_dict") else message


class WebServerAdapter:
    """Web server adapter for HTTP/WebSocket communication."""

    def __init__(
        self,
        config_service: ConfigService,
        logger: LoggingService,
        message_bus: MessageBus,
        control_client: DeviceControlClient,
        supervisor: StreamSupervisor,
        preview_service: PreviewService,
        frontend_dist_path: Optional[Path] = None,
        on_startup: Optional[Callable[[], Awaitable[None]]] = None,
        on_shutdown: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.config_service = config_service
        self.logger = logger
        self.message_bus = message_bus
        self.control_client = control_client
        self.supervisor = supervisor
        self.preview_service = preview_service
        self.frontend_dist_path = frontend_dist_path
        self.on_startup = on_startup
        self.on_shutdown = on_shutdown
        self._command_tasks: Set[asyncio.Task] = set()

        self.app = FastAPI(title="ptzcast API", lifespan=self._lifespan)
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        self._setup_routes()

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        if self.on_startup is not None:
            await self.on_startup()
        yield
        if self.on_shutdown is not None:
            await self.on_shutdown()

    def _setup_routes(self):
        """Set up API routes."""
        @self.app.get("/api/system")
        async def get_system() -> Dict[str, Any]:
            """Get system information."""
            return {
                "appName": self.config_service.get("app_name", "ptzcast"),
                "version": self.config_service.get("version"),
                "device": self.control_client.device_path,
                "stream": self.supervisor.state.value,
            }

        # Camera controls
        @self.app.get("/api/controls")
        async def get_all_controls():
            """Raw v4l2-ctl dump plus the capability table."""
            return result_response(await self.control_client.get_all_controls())

        @self.app.get("/api/control/{name}")
        async def get_control(name: str):
            return result_response(await self.control_client.get_control(name))

        @self.app.post("/api/control/{name}")
        async def set_control(name: str, request: ControlValue):
            return result_response(await self.control_client.set_control(name, request.value))

        @self.app.post("/api/camera/pan")
        async def pan(request: Movement):
            return result_response(await self.control_client.pan(request.degrees))

        @self.app.post("/api/camera/tilt")
        async def tilt(request: Movement):
            return result_response(await self.control_client.tilt(request.degrees))

        @self.app.post("/api/camera/zoom")
        async def zoom(request: ZoomLevel):
            return result_response(await self.control_client.zoom(request.level))

        @self.app.post("/api/camera/reset-position")
        async def reset_position():
            return result_response(await self.control_client.reset_position())

        @self.app.get("/api/camera/config")
        async def get_camera_config() -> Dict[str, Any]:
            return {
                "success": True,
                "config": self.control_client.camera_config_service.get_config(),
                "position": self.control_client.get_position(),
            }

        @self.app.post("/api/camera/reset")
        async def reset_camera() -> Dict[str, Any]:
            """Reset every control to its default and apply it to the camera."""
            results = await self.control_client.reset_to_defaults()
            return {
                "success": all(r.success for r in results),
                "results": [r.to_dict() for r in results],
            }

        # Outbound stream
        @self.app.get("/api/stream/status")
        async def get_stream_status() -> Dict[str, Any]:
            return self.supervisor.get_status()

        @self.app.post("/api/stream/start")
        async def start_stream(request: Dict[str, Any] = Body(default={})):
            return result_response(await self.supervisor.start(request))

        @self.app.post("/api/stream/stop")
        async def stop_stream():
            return result_response(await self.supervisor.stop())

        @self.app.post("/api/stream/config")
        async def update_stream_config(request: Dict[str, Any] = Body(...)):
            return result_response(self.supervisor.update_config(request))

        @self.app.post("/api/stream/overlay")
        async def update_overlay(request: Dict[str, Any] = Body(...)):
            return result_response(self.supervisor.update_overlay(request))

        @self.app.get("/api/stream/encoders")
        async def probe_encoders() -> Dict[str, Any]:
            return await self.supervisor.probe_encoders()

        # Live preview
        @self.app.get("/video/stream")
        async def video_stream():
            """MJPEG preview; refused while the outbound stream owns the camera."""
            availability = self.preview_service.check_available()
            if not availability.success:
                return result_response(availability)
            return StreamingResponse(
                self._multipart(self.preview_service.frames()),
                media_type="multipart/x-mixed-replace; boundary=frame",
                headers={"Cache-Control": "no-cache"},
            )

        @self.app.websocket("/ws/events")
        async def events(websocket: WebSocket):
            """Lifecycle/control events out, camera commands in."""
            await websocket.accept()
            queue: asyncio.Queue = asyncio.Queue(maxsize=EVENT_QUEUE_SIZE)

            def relay(topic: str, message: Any):
                try:
                    queue.put_nowait({"type": topic, "data": _payload(message)})
                except asyncio.QueueFull:
                    self.logger.debug(f"[Web] Event queue full, dropping {topic}")

            self.message_bus.subscribe_many(EVENT_TOPICS, relay)
            sender = asyncio.create_task(self._send_events(websocket, queue))
            self.logger.info("[Web] Event client connected")
            try:
                await queue.put({"type": "status", "data": self.supervisor.get_status()})
                while True:
                    command = await websocket.receive_json()
                    task = asyncio.create_task(self._handle_command(command, queue))
                    self._command_tasks.add(task)
                    task.add_done_callback(self._command_tasks.discard)
            except WebSocketDisconnect:
                self.logger.info("[Web] Event client disconnected")
            except Exception as e:
                self.logger.error(f"[Web] Event socket error: {e}")
            finally:
                self.message_bus.unsubscribe_many(EVENT_TOPICS, relay)
                sender.cancel()

        # Serve static files in production mode
        if self.frontend_dist_path is not None and self.frontend_dist_path.exists():
            @self.app.get("/{full_path:path}")
            async def serve_frontend(full_path: str):
                """Serve frontend static files. Exclude /api to avoid shadowing API routes."""
                if full_path.startswith("api"):
                    raise HTTPException(status_code=404, detail="Not found")
                if full_path == "" or full_path == "/":
                    full_path = "index.html"

                file_path = self.frontend_dist_path / full_path
                if file_path.exists() and file_path.is_file():
                    return FileResponse(file_path)
                return FileResponse(self.frontend_dist_path / "index.html")

    async def _send_events(self, websocket: WebSocket, queue: asyncio.Queue):
        while True:
            message = await queue.get()
            try:
                await websocket.send_json(message)
            except Exception as e:
                self.logger.debug(f"[Web] Failed to send event: {e}")
                return

    async def _handle_command(self, command: Any, queue: asyncio.Queue):
        """Run one socket command; its controlResult arrives through the bus relay."""
        if not isinstance(command, dict):
            command = {}
        kind = command.get("type")
        client = self.control_client
        try:
            if kind == "setControl":
                await client.set_control(str(command.get("control")), command.get("value"))
            elif kind == "getControl":
                await client.get_control(str(command.get("control")))
            elif kind == "pan":
                await client.pan(float(command.get("degrees", 0)))
            elif kind == "tilt":
                await client.tilt(float(command.get("degrees", 0)))
            elif kind == "zoom":
                await client.zoom(int(command.get("level", 0)))
            elif kind == "resetPosition":
                result = await client.reset_position()
                await queue.put({"type": CONTROL_RESULT_TOPIC, "data": result.to_dict()})
            else:
                await queue.put({"type": "error", "data": {"message": f"Unknown command: {kind}"}})
        except (TypeError, ValueError, OverflowError) as e:
            await queue.put({"type": "error", "data": {"message": f"Invalid {kind} command: {e}"}})

    async def _multipart(self, frames: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        try:
            async for frame in frames:
                yield (
                    b"--frame\r\n"
                    b"Content-Type: image/jpeg\r\n"
                    + f"Content-Length: {len(frame)}\r\n\r\n".encode()
                    + frame
                    + b"\r\n"
                )
        finally:
            await frames.aclose()

    def get_app(self) -> FastAPI:
        """Get FastAPI application."""
        return self.app
