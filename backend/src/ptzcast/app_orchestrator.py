"""Application orchestrator for ptzcast."""

from pathlib import Path
from typing import Callable, List, Optional
from .services.logging_service import LoggingService
from .services.config_service import ConfigService
from .services.message_bus import MessageBus
from .services.camera_config_service import CameraConfigService
from .services.stream_config_service import StreamConfigService
from .domain.camera_control import DeviceControlClient
from .domain.preview_service import PreviewService
from .domain.resource_arbiter import ResourceArbiter
from .domain.stream_supervisor import StreamSupervisor
from .ports.control_utility_port import ControlUtilityPort
from .ports.holder_discovery_port import HolderDiscoveryStrategy
from .ports.pipeline_launcher_port import PipelineLauncherPort
from .ports.preview_source_port import PreviewSourcePort
from .adapters.ffmpeg_preview import FfmpegPreviewAdapter
from .adapters.gstreamer_launcher import GstLaunchAdapter
from .adapters.holder_discovery import default_strategies
from .adapters.v4l2_ctl_adapter import V4L2CtlAdapter
from .adapters.web_server import WebServerAdapter


class AppOrchestrator:
    """Orchestrates application startup and component lifecycle.

    Every long-lived service is constructed here once and handed to the web
    adapter by reference. Ports default to the real command-line adapters and
    can be replaced (tests pass fakes).
    """

    def __init__(
        self,
        config_dir: Path,
        frontend_dist_path: Optional[Path] = None,
        control_utility: Optional[ControlUtilityPort] = None,
        launcher: Optional[PipelineLauncherPort] = None,
        discovery_strategies: Optional[List[HolderDiscoveryStrategy]] = None,
        preview_factory: Optional[Callable[[], PreviewSourcePort]] = None,
        kill: Optional[Callable[[int, int], None]] = None,
    ):
        # Initialize services in order
        self.logger = LoggingService()
        self.config_service = ConfigService(config_dir, self.logger)
        self.message_bus = MessageBus(self.logger)
        self.camera_config_service = CameraConfigService(config_dir, self.logger)
        self.stream_config_service = StreamConfigService(config_dir, self.logger)

        device_path = self.config_service.get("camera_device")

        arbiter_kwargs = {"kill": kill} if kill is not None else {}
        self.arbiter = ResourceArbiter(
            discovery_strategies if discovery_strategies is not None else default_strategies(self.logger),
            self.logger,
            grace_period=float(self.config_service.get("eviction_grace_period")),
            **arbiter_kwargs,
        )

        self.control_client = DeviceControlClient(
            device_path,
            control_utility or V4L2CtlAdapter(self.logger),
            self.camera_config_service,
            self.logger,
            message_bus=self.message_bus,
            control_settle_delay=float(self.config_service.get("control_settle_delay")),
            motion_settle_delay=float(self.config_service.get("motion_settle_delay")),
            wake_delay=float(self.config_service.get("camera_wake_delay")),
        )

        self.supervisor = StreamSupervisor(
            device_path,
            launcher or GstLaunchAdapter(self.logger),
            self.arbiter,
            self.stream_config_service,
            self.message_bus,
            self.logger,
            preview_port=self.config_service.get("preview_port"),
            start_probe=float(self.config_service.get("stream_start_probe")),
            stop_timeout=float(self.config_service.get("stream_stop_timeout")),
            auto_start_delay=float(self.config_service.get("auto_start_delay")),
        )

        self.preview_service = PreviewService(
            device_path,
            preview_factory or (lambda: FfmpegPreviewAdapter(self.logger)),
            self.arbiter,
            self.supervisor,
            self.logger,
            width=int(self.config_service.get("preview_width")),
            height=int(self.config_service.get("preview_height")),
            framerate=int(self.config_service.get("preview_framerate")),
        )

        self.web_server = WebServerAdapter(
            self.config_service,
            self.logger,
            self.message_bus,
            self.control_client,
            self.supervisor,
            self.preview_service,
            frontend_dist_path,
            on_startup=self.on_startup,
            on_shutdown=self.shutdown,
        )

    async def on_startup(self):
        """Wake the camera, restore its saved controls, then reconcile auto-start."""
        if await self.control_client.activate_camera():
            results = await self.control_client.apply_config()
            failed = [r.get("control") for r in results if not r.success]
            if failed:
                self.logger.warning(f"[App] Controls not applied at startup: {failed}")
        else:
            self.logger.warning("[App] Camera not activated, skipping saved control restore")
        self.supervisor.schedule_auto_start()

    def start(self):
        """Start the application."""
        self.logger.info("[App] Starting ptzcast application...")
        self.logger.info(f"[App] Camera device: {self.config_service.get('camera_device')}")
        return self.web_server.get_app()

    async def shutdown(self):
        """Shutdown the application."""
        self.logger.info("[App] Shutting down ptzcast application...")
        await self.supervisor.shutdown()
