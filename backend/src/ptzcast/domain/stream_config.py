"""Stream and overlay configuration records."""

from dataclasses import dataclass, field, fields, asdict, replace
from typing import Any, Dict, Tuple


PROTOCOLS: Tuple[str, ...] = ("srt", "rtmp", "udp")
ENCODERS: Tuple[str, ...] = ("nvv4l2h264enc", "omxh264enc", "v4l2h264enc", "x264enc")

# Protocols that cannot fall back to a local default destination
DESTINATION_REQUIRED: Tuple[str, ...] = ("srt", "udp")

DEFAULT_RTMP_URI = "rtmp://localhost/live/stream"


@dataclass
class OverlayConfig:
    """Burned-in overlay settings."""
    enabled: bool = False
    type: str = "text"  # "text" | "url" (url overlays are rendered by the browser preview)
    title: str = ""
    subtitle: str = ""
    url: str = ""
    show_timestamp: bool = False
    timestamp_format: str = "%Y-%m-%d %H:%M:%S"
    position: str = "top"  # "top" | "center" | "bottom"
    alignment: str = "center"  # "left" | "center" | "right"
    font_size: int = 32
    color: str = "white"
    background: str = "shaded"  # "shaded" | "none"
    background_opacity: float = 0.5
    logo_path: str = ""

    def merged(self, partial: Dict[str, Any]) -> "OverlayConfig":
        """Shallow merge of known fields; no range checks."""
        known = {k: v for k, v in partial.items() if k in _field_names(OverlayConfig)}
        return replace(self, **known)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OverlayConfig":
        return cls().merged(data or {})


@dataclass
class StreamConfig:
    """Outbound stream settings. A running pipeline reflects the snapshot taken at start."""
    protocol: str = "srt"
    destination: str = ""
    width: int = 1920
    height: int = 1080
    framerate: int = 30
    bitrate: int = 5000000  # bits per second
    encoder: str = "nvv4l2h264enc"
    auto_start: bool = False
    overlay: OverlayConfig = field(default_factory=OverlayConfig)

    @property
    def requires_destination(self) -> bool:
        return self.protocol in DESTINATION_REQUIRED

    def merged(self, partial: Dict[str, Any]) -> "StreamConfig":
        """Shallow merge of known fields; a nested 'overlay' mapping is merged into the overlay record."""
        names = _field_names(StreamConfig)
        known = {k: v for k, v in partial.items() if k in names and k != "overlay"}
        overlay = self.overlay
        if isinstance(partial.get("overlay"), dict):
            overlay = overlay.merged(partial["overlay"])
        elif isinstance(partial.get("overlay"), OverlayConfig):
            overlay = partial["overlay"]
        return replace(self, overlay=overlay, **known)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StreamConfig":
        return cls().merged(data or {})


def _field_names(cls) -> Tuple[str, ...]:
    return tuple(f.name for f in fields(cls))


def unknown_keys(partial: Dict[str, Any]) -> Tuple[str, ...]:
    """Keys in a stream-config update that no field accepts."""
    names = _field_names(StreamConfig)
    return tuple(k for k in partial if k not in names)
