"""Logging service for ptzcast.

Log messages use section prefixes for filtering and debugging:
  [App] Application lifecycle, camera wake-up, auto-start
  [Config] / [CameraConfig] / [StreamConfig] Configuration load/save
  [Control] v4l2-ctl control get/set, pan/tilt tracking
  [Arbiter] Device/port holder discovery and eviction
  [Pipeline] Pipeline descriptor build
  [Stream] gst-launch process lifecycle and diagnostics
  [Preview] ffmpeg MJPEG preview transcoder
  [Web] HTTP/WebSocket adapter
  [MessageBus] Pub/sub (debug level)

Set LOG_LEVEL=DEBUG (or a numeric level) to see debug messages, e.g. every
v4l2-ctl invocation and [Arbiter] discovery details.
"""

import logging
import os
from typing import Optional, Union


def resolve_level(value: Optional[Union[str, int]], default: int = logging.INFO) -> int:
    """Level from a name ('debug'), a number ('10') or None."""
    if value is None or value == "":
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    level = logging.getLevelName(text.upper())
    return level if isinstance(level, int) else default


class LoggingService:
    """Application-wide logger with [Section] prefixed messages."""

    def __init__(self, name: str = "ptzcast", level: Optional[Union[str, int]] = None):
        self.logger = logging.getLogger(name)
        level = resolve_level(level if level is not None else os.environ.get("LOG_LEVEL"))
        self.logger.setLevel(level)

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            ))
            self.logger.addHandler(handler)

    def info(self, message: str, **kwargs):
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs):
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs):
        """Log error message (kwargs e.g. exc_info=True for traceback)."""
        self.logger.error(message, **kwargs)

    def debug(self, message: str, **kwargs):
        self.logger.debug(message, **kwargs)

    def tool_output(self, section: str, program: str, text: Optional[str], level: int = logging.DEBUG):
        """Log captured output of an external program, one record per non-empty line."""
        if not self.logger.isEnabledFor(level):
            return
        for line in (text or "").splitlines():
            line = line.rstrip()
            if line:
                self.logger.log(level, f"[{section}] {program}: {line}")
