"""Services package."""

from .logging_service import LoggingService
from .config_service import ConfigService
from .message_bus import MessageBus
from .camera_config_service import CameraConfigService
from .stream_config_service import StreamConfigService

__all__ = [
    'LoggingService',
    'ConfigService',
    'MessageBus',
    'CameraConfigService',
    'StreamConfigService',
]
