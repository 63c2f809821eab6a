"""Whole-document JSON persistence used by the configuration services."""

import json
from pathlib import Path
from typing import Any, Optional
from .logging_service import LoggingService


class JsonDocument:
    """A JSON file that is always read whole and written whole."""
    
    def __init__(self, path: Path, logger: LoggingService, section: str = "Config"):
        self.path = path
        self.logger = logger
        self.section = section
    
    def exists(self) -> bool:
        return self.path.exists()
    
    def read(self) -> Optional[Any]:
        """Return the parsed document, or None if missing or unreadable."""
        if not self.path.exists():
            self.logger.info(f"[{self.section}] No config file at {self.path}, using defaults")
            return None
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
            self.logger.info(f"[{self.section}] Loaded config from {self.path}")
            return data
        except (OSError, ValueError) as e:
            self.logger.error(f"[{self.section}] Failed to load config from {self.path}: {e}")
            return None
    
    def write(self, data: Any) -> bool:
        """Write the document; returns False on I/O failure instead of raising."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w') as f:
                json.dump(data, f, indent=2)
            self.logger.debug(f"[{self.section}] Saved config to {self.path}")
            return True
        except (OSError, TypeError, ValueError) as e:
            self.logger.error(f"[{self.section}] Failed to save config to {self.path}: {e}")
            return False
