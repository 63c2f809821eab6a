"""
Pipeline Builder.
Translates a StreamConfig into an ordered list of stage descriptors for
gst-launch-1.0, and renders that structure into the tool's argument list.

Stage order is fixed:
  source → decode → [overlay: convert → timestamp → title → subtitle → logo]
  → encoder → parse → mux → sink
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit
from .results import ErrorCode
from .stream_config import DEFAULT_RTMP_URI, OverlayConfig, StreamConfig


DEFAULT_DEVICE = "/dev/video0"
SRT_LATENCY_MS = 125
DEFAULT_UDP_HOST = "127.0.0.1"
DEFAULT_UDP_PORT = 5000
LOGO_OFFSET = 20

# GStreamer colors are 0xAARRGGBB
OVERLAY_COLORS: Dict[str, str] = {
    "white": "0xFFFFFFFF",
    "black": "0xFF000000",
    "red": "0xFFFF0000",
    "green": "0xFF00FF00",
    "blue": "0xFF0000FF",
    "yellow": "0xFFFFFF00",
    "cyan": "0xFF00FFFF",
    "magenta": "0xFFFF00FF",
}
DEFAULT_COLOR = "white"


class PipelineBuildError(Exception):
    """Raised when a StreamConfig cannot be turned into a pipeline."""
    code = ErrorCode.EXTERNAL_PROCESS_FAILURE


class UnsupportedProtocolError(PipelineBuildError):
    code = ErrorCode.UNSUPPORTED_PROTOCOL


class UnsupportedEncoderError(PipelineBuildError):
    code = ErrorCode.UNSUPPORTED_ENCODER


@dataclass(frozen=True)
class StageDescriptor:
    """One pipeline element (or caps filter) with ordered key/value arguments."""
    name: str
    args: Tuple[Tuple[str, str], ...] = ()
    role: str = ""
    caps: bool = False

    def arg(self, key: str) -> Optional[str]:
        for k, v in self.args:
            if k == key:
                return v
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "role": self.role, "caps": self.caps, "args": [list(a) for a in self.args]}


@dataclass(frozen=True)
class PipelineDescriptor:
    """Ordered stages of one pipeline run."""
    stages: Tuple[StageDescriptor, ...] = field(default_factory=tuple)

    def roles(self) -> List[str]:
        return [s.role for s in self.stages]

    def by_role(self, role: str) -> List[StageDescriptor]:
        return [s for s in self.stages if s.role == role]

    def to_dict(self) -> Dict[str, Any]:
        return {"stages": [s.to_dict() for s in self.stages]}


def _stage(name: str, role: str, *args: Tuple[str, Any]) -> StageDescriptor:
    return StageDescriptor(name=name, args=tuple((k, str(v)) for k, v in args), role=role)


def _caps(media_type: str, role: str, *args: Tuple[str, Any]) -> StageDescriptor:
    return StageDescriptor(name=media_type, args=tuple((k, str(v)) for k, v in args), role=role, caps=True)


def color_to_gst(name: Optional[str]) -> str:
    """Map a color name to GStreamer's ARGB value; unknown names fall back to white."""
    return OVERLAY_COLORS.get(str(name or "").strip().lower(), OVERLAY_COLORS[DEFAULT_COLOR])


def parse_udp_destination(destination: str) -> Tuple[str, int]:
    """Host and port from 'udp://host:port' or 'host:port'; defaults when unparsable."""
    text = (destination or "").strip()
    if not text:
        return DEFAULT_UDP_HOST, DEFAULT_UDP_PORT
    if "://" not in text:
        text = f"udp://{text}"
    try:
        parts = urlsplit(text)
        host = parts.hostname or DEFAULT_UDP_HOST
        port = parts.port or DEFAULT_UDP_PORT
    except ValueError:
        return DEFAULT_UDP_HOST, DEFAULT_UDP_PORT
    return host, port


def build_pipeline(config: StreamConfig, device_path: str = DEFAULT_DEVICE) -> PipelineDescriptor:
    """Build the stage list for a stream config. Pure; spawns nothing.

    Raises:
        UnsupportedProtocolError: protocol is not srt, rtmp or udp
        UnsupportedEncoderError: encoder has no known stage layout
    """
    stages: List[StageDescriptor] = [
        _stage("v4l2src", "source", ("device", device_path)),
        _caps(
            "image/jpeg", "source",
            ("width", config.width),
            ("height", config.height),
            ("framerate", f"{config.framerate}/1"),
        ),
        _stage("jpegdec", "decode"),
    ]
    if config.overlay.enabled:
        stages.extend(_overlay_stages(config.overlay))
    stages.extend(_encoder_stages(config))
    stages.append(_stage("h264parse", "parse"))
    stages.extend(_sink_stages(config))
    return PipelineDescriptor(stages=tuple(stages))


def _overlay_stages(overlay: OverlayConfig) -> List[StageDescriptor]:
    stages = [_stage("videoconvert", "convert")]
    valign = "bottom" if overlay.position == "bottom" else "top"
    font_size = int(overlay.font_size)
    color = color_to_gst(overlay.color)
    shaded = overlay.background != "none"
    shading = ("shading-value", int(max(0.0, min(1.0, float(overlay.background_opacity))) * 255))

    if overlay.show_timestamp:
        args = [
            ("time-format", overlay.timestamp_format),
            ("valignment", valign),
            ("halignment", "right"),
            ("font-desc", f"Sans Bold {font_size}"),
            ("color", color),
        ]
        if shaded:
            args += [("shaded-background", "true"), shading]
        stages.append(_stage("timeoverlay", "timestamp_overlay", *args))

    if overlay.title:
        args = [
            ("text", overlay.title),
            ("valignment", valign),
            ("halignment", overlay.alignment),
            ("font-desc", f"Sans Bold {font_size}"),
            ("color", color),
        ]
        if shaded:
            args += [("shaded-background", "true"), shading]
        stages.append(_stage("textoverlay", "title_overlay", *args))

    if overlay.subtitle:
        args = [
            ("text", overlay.subtitle),
            ("valignment", "bottom" if overlay.position == "bottom" else "center"),
            ("halignment", overlay.alignment),
            ("font-desc", f"Sans {int(font_size * 0.75)}"),
            ("color", color),
        ]
        if shaded:
            args += [("shaded-background", "true"), shading]
        stages.append(_stage("textoverlay", "subtitle_overlay", *args))

    if overlay.logo_path:
        stages.append(_stage(
            "gdkpixbufoverlay", "logo_overlay",
            ("location", overlay.logo_path),
            ("offset-x", LOGO_OFFSET),
            ("offset-y", LOGO_OFFSET),
        ))
    return stages


def _encoder_stages(config: StreamConfig) -> List[StageDescriptor]:
    bitrate = int(config.bitrate)
    encoder = config.encoder
    if encoder == "nvv4l2h264enc":
        # Jetson: copy into NVMM memory for the hardware encoder
        return [
            _stage("nvvidconv", "encoder"),
            _caps("video/x-raw(memory:NVMM)", "encoder"),
            _stage(
                "nvv4l2h264enc", "encoder",
                ("bitrate", bitrate),
                ("insert-sps-pps", "true"),
                ("iframeinterval", config.framerate),
            ),
            _caps("video/x-h264", "encoder", ("stream-format", "byte-stream")),
        ]
    if encoder == "omxh264enc":
        return [_stage("omxh264enc", "encoder", ("bitrate", bitrate), ("control-rate", "variable"))]
    if encoder == "v4l2h264enc":
        # Raspberry Pi: rate is passed through extra-controls
        return [
            _stage("videoconvert", "encoder"),
            _stage("v4l2h264enc", "encoder", ("extra-controls", f"controls,video_bitrate={bitrate}")),
            _caps("video/x-h264", "encoder", ("level", "(string)4")),
        ]
    if encoder == "x264enc":
        # Software fallback; x264enc takes kbit/s
        return [
            _stage("videoconvert", "encoder"),
            _stage(
                "x264enc", "encoder",
                ("bitrate", max(1, bitrate // 1000)),
                ("tune", "zerolatency"),
                ("speed-preset", "ultrafast"),
                ("key-int-max", config.framerate),
            ),
        ]
    raise UnsupportedEncoderError(f"Unsupported encoder: {encoder}")


def _sink_stages(config: StreamConfig) -> List[StageDescriptor]:
    protocol = config.protocol
    if protocol == "srt":
        return [
            _stage("mpegtsmux", "mux"),
            _stage("srtsink", "sink", ("uri", config.destination), ("latency", SRT_LATENCY_MS)),
        ]
    if protocol == "rtmp":
        location = config.destination or DEFAULT_RTMP_URI
        return [
            _stage("flvmux", "mux", ("streamable", "true")),
            _stage("rtmpsink", "sink", ("location", location)),
        ]
    if protocol == "udp":
        host, port = parse_udp_destination(config.destination)
        return [
            _stage("mpegtsmux", "mux"),
            _stage("udpsink", "sink", ("host", host), ("port", port)),
        ]
    raise UnsupportedProtocolError(f"Unsupported protocol: {protocol}")


def _render_value(value: str) -> str:
    if value == "" or any(c.isspace() or c in '",;!' for c in value):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return value


def render_argv(descriptor: PipelineDescriptor) -> List[str]:
    """Render stages into gst-launch-1.0 arguments, separated by '!'."""
    argv: List[str] = []
    for index, stage in enumerate(descriptor.stages):
        if index:
            argv.append("!")
        if stage.caps:
            argv.append(",".join([stage.name] + [f"{k}={v}" for k, v in stage.args]))
        else:
            argv.append(stage.name)
            argv.extend(f"{k}={_render_value(v)}" for k, v in stage.args)
    return argv
