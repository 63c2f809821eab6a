"""Camera control configuration store for ptzcast."""

from pathlib import Path
from typing import Any, Dict, Optional
from .logging_service import LoggingService
from .json_document import JsonDocument
from ..domain.controls import CONTROLS, ControlDescriptor, default_values


class CameraConfigService:
    """Persists the camera's control values (camera-config.json).
    
    The file is a flat mapping of control name -> integer value. Values that
    violate the capability table are repaired on load; updates through
    merge_update() are stored as given.
    """
    
    def __init__(
        self,
        config_dir: Path,
        logger: LoggingService,
        controls: Optional[Dict[str, ControlDescriptor]] = None,
        filename: str = "camera-config.json",
    ):
        self.config_dir = config_dir
        self.logger = logger
        self.controls = controls if controls is not None else CONTROLS
        self.document = JsonDocument(config_dir / filename, logger, section="CameraConfig")
        self.config: Dict[str, Any] = self.load()
    
    def get_defaults(self) -> Dict[str, int]:
        """Default value for every known control."""
        return default_values(self.controls)
    
    def load(self) -> Dict[str, Any]:
        """Load the persisted config, replacing invalid values with defaults.
        
        A missing or unreadable file yields the full default set.
        """
        data = self.document.read()
        if not isinstance(data, dict):
            if data is not None:
                self.logger.error("[CameraConfig] Config file is not a JSON object, using defaults")
            self.config = self.get_defaults()
            return dict(self.config)
        
        needs_save = False
        for name, value in list(data.items()):
            descriptor = self.controls.get(name)
            if descriptor is None:
                continue
            if not descriptor.accepts(value):
                self.logger.warning(
                    f"[CameraConfig] Invalid value for {name}: {value!r} "
                    f"(range: {descriptor.min}-{descriptor.max}), using default: {descriptor.default}"
                )
                data[name] = descriptor.default
                needs_save = True
        
        self.config = data
        if needs_save:
            self.logger.info("[CameraConfig] Saving corrected config...")
            self.save()
        return dict(self.config)
    
    def save(self, config: Optional[Dict[str, Any]] = None) -> bool:
        """Write the config; returns False on failure. Callers must check the result."""
        if config is not None:
            self.config = dict(config)
        ok = self.document.write(self.config)
        if not ok:
            self.logger.warning("[CameraConfig] Camera config not persisted (PersistFailure)")
        return ok
    
    def merge_update(self, partial: Dict[str, Any]) -> Dict[str, Any]:
        """Shallow-merge values into the config and persist. No range validation."""
        self.config.update(partial)
        self.save()
        return dict(self.config)
    
    def set_value(self, name: str, value: int) -> bool:
        """Record one control value and persist; returns the save result."""
        self.config[name] = value
        return self.save()
    
    def reset_to_defaults(self) -> bool:
        """Replace the config with the defaults and persist."""
        self.config = self.get_defaults()
        return self.save()
    
    def get_config(self) -> Dict[str, Any]:
        return dict(self.config)
    
    def get_value(self, name: str, default: Any = None) -> Any:
        return self.config.get(name, default)
