"""Application configuration service for ptzcast."""

import os
from pathlib import Path
from typing import Any, Dict
from ..services.logging_service import LoggingService
from ..services.json_document import JsonDocument


DEFAULT_APP_CONFIG: Dict[str, Any] = {
    "app_name": "ptzcast",
    "version": "0.1.0",
    "camera_device": "/dev/video0",
    "host": "0.0.0.0",
    "port": 3000,
    # Port of an external preview transcoder that must be evicted before streaming (None = not used)
    "preview_port": None,
    "preview_width": 1280,
    "preview_height": 720,
    "preview_framerate": 30,
    "auto_start_delay": 3.0,
    "eviction_grace_period": 1.0,
    "control_settle_delay": 0.05,
    "motion_settle_delay": 0.5,
    "camera_wake_delay": 1.0,
    "stream_start_probe": 0.5,
    "stream_stop_timeout": 5.0,
}

# Environment variable -> (config key, converter)
ENV_OVERRIDES = {
    "CAMERA_DEVICE": ("camera_device", str),
    "HOST": ("host", str),
    "PORT": ("port", int),
    "PREVIEW_PORT": ("preview_port", int),
}


class ConfigService:
    """Service for managing application configuration.
    
    Values come from app.json in the config directory (written with defaults on
    first run), then environment overrides.
    """
    
    def __init__(self, config_dir: Path, logger: LoggingService):
        self.config_dir = config_dir
        self.logger = logger
        self.document = JsonDocument(config_dir / "app.json", logger, section="Config")
        self.config: Dict[str, Any] = {}
        self._load_config()
    
    def _load_config(self):
        """Load configuration from file and environment."""
        data = self.document.read()
        if isinstance(data, dict):
            self.config = {**DEFAULT_APP_CONFIG, **data}
        else:
            self.config = dict(DEFAULT_APP_CONFIG)
            if not self.document.exists():
                self._save_config()
        self._apply_env_overrides()
    
    def _apply_env_overrides(self):
        for env_name, (key, convert) in ENV_OVERRIDES.items():
            raw = os.environ.get(env_name)
            if not raw:
                continue
            try:
                self.config[key] = convert(raw)
                self.logger.info(f"[Config] {key} overridden by {env_name}={raw}")
            except ValueError:
                self.logger.warning(f"[Config] Ignoring invalid {env_name}={raw!r}")
    
    def _save_config(self) -> bool:
        """Save configuration to file."""
        return self.document.write(self.config)
    
    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        return self.config.get(key, default)
    
    def set(self, key: str, value: Any) -> bool:
        """Set configuration value."""
        self.config[key] = value
        return self._save_config()
