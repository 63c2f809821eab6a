"""Device control client: named camera controls over the v4l2 control utility."""

import asyncio
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from .controls import CONTROLS, ControlDescriptor, POSITIONAL_ORDER, UNITS_PER_DEGREE, list_controls
from .results import ErrorCode, OperationResult
from ..ports.control_utility_port import ControlUtilityPort
from ..services.camera_config_service import CameraConfigService
from ..services.logging_service import LoggingService
from ..services.message_bus import MessageBus


CONTROL_RESULT_TOPIC = "controlResult"

# v4l2-ctl sometimes reports failures on stderr with exit status 0
_FAILURE_KEYWORDS = ("error", "failed")

# "brightness: 50" -> 50
_VALUE_PATTERN = re.compile(r":\s*(-?\d+)")


@dataclass
class TrackedPosition:
    """Software-tracked pan/tilt position; the camera does not report it reliably."""
    pan: int = 0
    tilt: int = 0

    def reset(self):
        self.pan = 0
        self.tilt = 0


class DeviceControlClient:
    """Get/set camera controls, relative pan/tilt and bulk apply of saved settings.

    Positional controls share a motion lock so their settle delays only hold up
    further motion; other controls are never blocked by it.
    """

    def __init__(
        self,
        device_path: str,
        utility: ControlUtilityPort,
        camera_config_service: CameraConfigService,
        logger: LoggingService,
        message_bus: Optional[MessageBus] = None,
        controls: Optional[Dict[str, ControlDescriptor]] = None,
        control_settle_delay: float = 0.05,
        motion_settle_delay: float = 0.5,
        wake_delay: float = 1.0,
    ):
        self.device_path = device_path
        self.utility = utility
        self.camera_config_service = camera_config_service
        self.logger = logger
        self.message_bus = message_bus
        self.controls = controls if controls is not None else CONTROLS
        self.control_settle_delay = control_settle_delay
        self.motion_settle_delay = motion_settle_delay
        self.wake_delay = wake_delay
        self.position = TrackedPosition()
        self._motion_lock = asyncio.Lock()

    # -- single controls -------------------------------------------------

    async def set_control(self, name: str, value: Any, persist: bool = True) -> OperationResult:
        """Set one control on the device and, on success, record it in the camera config."""
        result = await self._set_control(name, value, persist)
        self._publish(result)
        return result

    async def _set_control(self, name: str, value: Any, persist: bool) -> OperationResult:
        descriptor = self.controls.get(name)
        if descriptor is None:
            return OperationResult.fail(ErrorCode.UNKNOWN_CONTROL, f"Unknown control: {name}", control=name)

        raw, value = value, coerce_control_value(value)
        if value is None:
            return OperationResult.fail(
                ErrorCode.OUT_OF_RANGE, f"Value {raw!r} is not an integer for {name}", control=name
            )

        if not descriptor.accepts(value):
            allowed = f"[{descriptor.min}, {descriptor.max}]" if descriptor.is_ranged else "0 or 1"
            return OperationResult.fail(
                ErrorCode.OUT_OF_RANGE,
                f"Value {value} out of range {allowed} for {name}",
                control=name,
            )

        self.logger.debug(f"[Control] Setting {name}={value} on {self.device_path}")
        try:
            output = await self.utility.set_control(self.device_path, name, value)
        except OSError as e:
            self.logger.error(f"[Control] Failed to run control utility for {name}: {e}")
            return OperationResult.fail(ErrorCode.EXTERNAL_PROCESS_FAILURE, str(e), control=name)

        stderr = (output.stderr or "").strip()
        self.logger.tool_output("Control", "v4l2-ctl", stderr, logging.WARNING)
        if output.returncode != 0 or any(k in stderr.lower() for k in _FAILURE_KEYWORDS):
            error = stderr or f"control utility exited with code {output.returncode}"
            self.logger.warning(f"[Control] Setting {name}={value} failed: {error}")
            return OperationResult.fail(ErrorCode.EXTERNAL_PROCESS_FAILURE, error, control=name)

        persisted = None
        if persist:
            persisted = self.camera_config_service.set_value(name, value)

        data: Dict[str, Any] = {"control": name, "value": value}
        if persisted is False:
            data["persisted"] = False
        return OperationResult.ok((output.stdout or "").strip() or "Control set successfully", **data)

    async def get_control(self, name: str) -> OperationResult:
        """Query one control; value is None when the output carries no integer."""
        descriptor = self.controls.get(name)
        if descriptor is None:
            result = OperationResult.fail(ErrorCode.UNKNOWN_CONTROL, f"Unknown control: {name}", control=name)
        else:
            try:
                output = await self.utility.get_control(self.device_path, name)
                if output.returncode != 0:
                    result = OperationResult.fail(
                        ErrorCode.EXTERNAL_PROCESS_FAILURE,
                        (output.stderr or "").strip() or f"control utility exited with code {output.returncode}",
                        control=name,
                    )
                else:
                    result = OperationResult.ok(
                        control=name,
                        value=parse_control_value(output.stdout),
                        info=descriptor.to_dict(),
                    )
            except OSError as e:
                self.logger.error(f"[Control] Failed to query {name}: {e}")
                result = OperationResult.fail(ErrorCode.EXTERNAL_PROCESS_FAILURE, str(e), control=name)
        self._publish(result)
        return result

    async def get_all_controls(self) -> OperationResult:
        """Raw control/format dump from the utility."""
        try:
            output = await self.utility.list_all(self.device_path)
        except (OSError, asyncio.TimeoutError) as e:
            return OperationResult.fail(ErrorCode.EXTERNAL_PROCESS_FAILURE, str(e))
        if output.returncode != 0:
            self.logger.tool_output("Control", "v4l2-ctl", output.stderr, logging.WARNING)
            return OperationResult.fail(ErrorCode.EXTERNAL_PROCESS_FAILURE, (output.stderr or "").strip())
        return OperationResult.ok(output=output.stdout, controls=list_controls(self.controls))

    def list_controls(self) -> List[Dict[str, Any]]:
        return list_controls(self.controls)

    # -- motion ----------------------------------------------------------

    async def pan(self, degrees: float) -> OperationResult:
        """Relative pan from the tracked position (positive = right)."""
        return await self._move("pan_absolute", "pan", degrees)

    async def tilt(self, degrees: float) -> OperationResult:
        """Relative tilt from the tracked position (positive = up)."""
        return await self._move("tilt_absolute", "tilt", degrees)

    async def _move(self, control: str, axis: str, degrees: float) -> OperationResult:
        descriptor = self.controls[control]
        try:
            amount = float(degrees)
        except (TypeError, ValueError):
            amount = math.nan
        if math.isnan(amount):
            return self._reject(control, f"Invalid {axis} movement: {degrees!r} degrees")
        async with self._motion_lock:
            current = getattr(self.position, axis)
            # clamp before rounding; huge moves overflow int conversion
            target = current + amount * UNITS_PER_DEGREE
            clamped = int(round(max(descriptor.min, min(descriptor.max, target))))
            self.logger.info(
                f"[Control] {axis.capitalize()}: current={current}, degrees={degrees}, new={target}, clamped={clamped}"
            )
            result = await self.set_control(control, clamped)
            if result.success:
                setattr(self.position, axis, clamped)
            return result

    async def zoom(self, level: int) -> OperationResult:
        async with self._motion_lock:
            return await self.set_control("zoom_absolute", level)

    async def reset_position(self) -> OperationResult:
        """Return pan/tilt to home and zero the tracked position."""
        async with self._motion_lock:
            results = [
                await self.set_control("pan_absolute", 0),
                await self.set_control("tilt_absolute", 0),
            ]
            self.position.reset()
        failed = [r.get("control") for r in results if not r.success]
        if failed:
            return OperationResult.fail(
                ErrorCode.EXTERNAL_PROCESS_FAILURE, f"Home reset failed for: {', '.join(failed)}"
            )
        return OperationResult.ok("Camera reset to home position", pan=0, tilt=0)

    def get_position(self) -> Dict[str, int]:
        return {"pan": self.position.pan, "tilt": self.position.tilt}

    # -- bulk ------------------------------------------------------------

    async def activate_camera(self) -> bool:
        """Open the device briefly so it wakes up before controls are applied."""
        self.logger.info(f"[App] Activating camera device {self.device_path}...")
        try:
            output = await self.utility.wake(self.device_path)
        except (OSError, asyncio.TimeoutError) as e:
            self.logger.warning(f"[App] Failed to activate camera: {e}")
            return False
        if output.returncode != 0:
            self.logger.warning(f"[App] Failed to activate camera: {(output.stderr or '').strip()}")
            return False
        await asyncio.sleep(self.wake_delay)
        self.logger.info("[App] Camera device activated")
        return True

    async def apply_config(self, config: Optional[Dict[str, Any]] = None) -> List[OperationResult]:
        """Apply a full camera config to the hardware.

        Non-positional controls go first in config order, then positional
        controls in POSITIONAL_ORDER. Failures are recorded per control and do
        not stop the remaining applications.
        """
        config = config if config is not None else self.camera_config_service.get_config()
        results: List[OperationResult] = []

        other = []
        positional = {}
        for name, value in config.items():
            if name not in self.controls:
                self.logger.warning(f"[Control] Skipping unknown control: {name}")
            elif name in POSITIONAL_ORDER:
                positional[name] = value
            else:
                other.append((name, value))

        self.logger.info("[Control] Applying image quality and exposure settings...")
        for name, value in other:
            results.append(await self.set_control(name, value, persist=False))
            await asyncio.sleep(self.control_settle_delay)

        self.logger.info("[Control] Applying pan/tilt/zoom settings...")
        async with self._motion_lock:
            for name in POSITIONAL_ORDER:
                if name not in positional:
                    continue
                result = await self.set_control(name, positional[name], persist=False)
                results.append(result)
                if result.success and name == "pan_absolute":
                    self.position.pan = result.get("value")
                elif result.success and name == "tilt_absolute":
                    self.position.tilt = result.get("value")
                await asyncio.sleep(self.motion_settle_delay)

        failed = sum(1 for r in results if not r.success)
        self.logger.info(f"[Control] Camera configuration applied ({len(results) - failed} ok, {failed} failed)")
        return results

    async def reset_to_defaults(self) -> List[OperationResult]:
        """Overwrite the camera config with defaults, persist, apply, zero tracking."""
        self.logger.info("[Control] Resetting camera to default values...")
        self.camera_config_service.reset_to_defaults()
        results = await self.apply_config(self.camera_config_service.get_config())
        self.position.reset()
        return results

    def _reject(self, control: str, error: str) -> OperationResult:
        result = OperationResult.fail(ErrorCode.OUT_OF_RANGE, error, control=control)
        self._publish(result)
        return result

    def _publish(self, result: OperationResult):
        if self.message_bus is not None:
            self.message_bus.publish(CONTROL_RESULT_TOPIC, result)


def parse_control_value(output: Optional[str]) -> Optional[int]:
    """First signed integer following a colon, or None."""
    match = _VALUE_PATTERN.search(output or "")
    return int(match.group(1)) if match else None


def coerce_control_value(value: Any) -> Optional[int]:
    """Integer form of a control value, or None when it is not integral.

    JSON booleans map to 0/1 and integral floats (50.0) are accepted; 50.7,
    NaN and infinities are not.
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None
