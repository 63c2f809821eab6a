"""Stream configuration store for ptzcast."""

from pathlib import Path
from typing import Any, Dict, Optional
from .logging_service import LoggingService
from .json_document import JsonDocument
from ..domain.stream_config import StreamConfig, unknown_keys


class StreamConfigService:
    """Persists the outbound stream and overlay settings (stream-config.json)."""
    
    def __init__(self, config_dir: Path, logger: LoggingService, filename: str = "stream-config.json"):
        self.config_dir = config_dir
        self.logger = logger
        self.document = JsonDocument(config_dir / filename, logger, section="StreamConfig")
        self.config: StreamConfig = self.load()
    
    def load(self) -> StreamConfig:
        """Load the persisted config; missing or unreadable files yield defaults."""
        data = self.document.read()
        if not isinstance(data, dict):
            self.config = StreamConfig()
            return self.config
        extra = unknown_keys(data)
        if extra:
            self.logger.warning(f"[StreamConfig] Ignoring unknown keys: {list(extra)}")
        self.config = StreamConfig.from_dict(data)
        return self.config
    
    def save(self, config: Optional[StreamConfig] = None) -> bool:
        """Write the config; returns False on failure."""
        if config is not None:
            self.config = config
        ok = self.document.write(self.config.to_dict())
        if not ok:
            self.logger.warning("[StreamConfig] Stream config not persisted (PersistFailure)")
        return ok
    
    def merge_update(self, partial: Optional[Dict[str, Any]]) -> StreamConfig:
        """Shallow-merge fields (and a nested 'overlay' mapping), persist, return the snapshot.
        
        Values are stored as given; protocol/encoder names are only checked when a
        pipeline is built.
        """
        partial = partial or {}
        extra = unknown_keys(partial)
        if extra:
            self.logger.warning(f"[StreamConfig] Ignoring unknown keys: {list(extra)}")
        self.config = self.config.merged(partial)
        self.save()
        return self.config
    
    def merge_overlay(self, partial: Optional[Dict[str, Any]]) -> StreamConfig:
        """Shallow-merge overlay fields only, persist, return the snapshot."""
        return self.merge_update({"overlay": dict(partial or {})})
    
    def set_auto_start(self, enabled: bool) -> bool:
        self.config = self.config.merged({"auto_start": enabled})
        return self.save()
    
    def get_config(self) -> StreamConfig:
        return self.config
