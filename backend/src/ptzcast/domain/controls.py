"""
Static capability table for the PTZ camera.

One ControlDescriptor per v4l2 control, as reported by
`v4l2-ctl -d /dev/video0 --list-ctrls-menus` on the target camera.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ControlKind(Enum):
    """How a control's value is constrained."""
    RANGE = "int"
    BOOL = "bool"
    MENU = "menu"


@dataclass(frozen=True)
class ControlDescriptor:
    """A named hardware control and its value constraints."""
    name: str
    hardware_id: str
    kind: ControlKind
    default: int
    min: int = 0
    max: int = 1
    step: int = 1

    def __post_init__(self):
        if self.kind is not ControlKind.BOOL and not (self.min <= self.default <= self.max):
            raise ValueError(
                f"Default {self.default} outside [{self.min}, {self.max}] for {self.name}"
            )

    @property
    def is_ranged(self) -> bool:
        """True for continuous-range and menu controls."""
        return self.kind is not ControlKind.BOOL

    def in_range(self, value: int) -> bool:
        return self.min <= value <= self.max

    def accepts(self, value: Any) -> bool:
        """Check a persisted value against kind and range."""
        if isinstance(value, bool) or not isinstance(value, int):
            return False
        if self.kind is ControlKind.BOOL:
            return value in (0, 1)
        return self.in_range(value)

    def clamp(self, value: int) -> int:
        return max(self.min, min(self.max, value))

    def to_dict(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {
            "name": self.name,
            "id": self.hardware_id,
            "type": self.kind.value,
            "default": self.default,
        }
        if self.is_ranged:
            info.update({"min": self.min, "max": self.max, "step": self.step})
        return info


def _range(name: str, hardware_id: str, min: int, max: int, default: int, step: int = 1) -> ControlDescriptor:
    return ControlDescriptor(name, hardware_id, ControlKind.RANGE, default, min, max, step)


def _menu(name: str, hardware_id: str, min: int, max: int, default: int) -> ControlDescriptor:
    return ControlDescriptor(name, hardware_id, ControlKind.MENU, default, min, max, 1)


def _bool(name: str, hardware_id: str, default: int) -> ControlDescriptor:
    return ControlDescriptor(name, hardware_id, ControlKind.BOOL, default)


_DESCRIPTORS: Tuple[ControlDescriptor, ...] = (
    _range("brightness", "0x00980900", 0, 100, 50),
    _range("contrast", "0x00980901", 0, 100, 50),
    _range("saturation", "0x00980902", 0, 100, 50),
    _range("hue", "0x00980903", 0, 100, 50),
    _bool("white_balance_temperature_auto", "0x0098090c", 1),
    _range("white_balance_red_component", "0x0098090e", 0, 2048, 1024),
    _range("white_balance_blue_component", "0x0098090f", 0, 2048, 1024),
    _range("gain", "0x00980913", 1, 128, 1),
    _menu("power_line_frequency", "0x00980918", 0, 2, 2),  # 0=Disabled, 1=50Hz, 2=60Hz
    _range("white_balance_temperature", "0x0098091a", 2000, 10000, 5000, step=100),
    _range("sharpness", "0x0098091b", 0, 100, 50),
    _range("backlight_compensation", "0x0098091c", 0, 18, 9),
    _menu("exposure_auto", "0x009a0901", 0, 3, 0),
    _range("exposure_absolute", "0x009a0902", 1, 2500, 330),
    _range("pan_absolute", "0x009a0908", -468000, 468000, 0, step=3600),
    _range("tilt_absolute", "0x009a0909", -324000, 324000, 0, step=3600),
    _range("focus_absolute", "0x009a090a", 0, 100, 0),
    _bool("focus_auto", "0x009a090c", 1),
    _range("zoom_absolute", "0x009a090d", 0, 12, 0),
    _range("zoom_continuous", "0x009a090f", 0, 100, 100),
    _range("pan_speed", "0x009a0920", -1, 160, 20),
    _range("tilt_speed", "0x009a0921", -1, 120, 20),
)

CONTROLS: Dict[str, ControlDescriptor] = {d.name: d for d in _DESCRIPTORS}

# Applied after everything else, in this order; physical motion needs longer settling.
POSITIONAL_ORDER: Tuple[str, ...] = (
    "pan_speed",
    "tilt_speed",
    "zoom_absolute",
    "pan_absolute",
    "tilt_absolute",
)

# pan/tilt step is 3600 units; the pan range of +/-468000 covers 260 degrees.
UNITS_PER_DEGREE = CONTROLS["pan_absolute"].step


def get_descriptor(name: str, table: Optional[Dict[str, ControlDescriptor]] = None) -> Optional[ControlDescriptor]:
    return (table if table is not None else CONTROLS).get(name)


def default_values(table: Optional[Dict[str, ControlDescriptor]] = None) -> Dict[str, int]:
    """Default value for every control, in table order."""
    table = table if table is not None else CONTROLS
    return {name: d.default for name, d in table.items()}


def list_controls(table: Optional[Dict[str, ControlDescriptor]] = None) -> List[Dict[str, Any]]:
    table = table if table is not None else CONTROLS
    return [d.to_dict() for d in table.values()]
