"""Control utility port interface (v4l2 control get/set)."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class CommandOutput:
    """Captured result of one external command."""
    returncode: int
    stdout: str = ""
    stderr: str = ""


class ControlUtilityPort(ABC):
    """Port interface for reading and writing named device controls."""
    
    @abstractmethod
    async def set_control(self, device_path: str, name: str, value: int) -> CommandOutput:
        """Set a control value on the device.
        
        Args:
            device_path: V4L2 device node (e.g., '/dev/video0')
            name: Control name (e.g., 'brightness')
            value: Integer value
        
        Returns:
            Captured output; callers inspect stderr for failures
        """
        pass
    
    @abstractmethod
    async def get_control(self, device_path: str, name: str) -> CommandOutput:
        """Query a control; stdout is expected to contain 'name: <integer>'."""
        pass
    
    @abstractmethod
    async def list_all(self, device_path: str) -> CommandOutput:
        """Dump every control and format the device reports."""
        pass
    
    @abstractmethod
    async def wake(self, device_path: str) -> CommandOutput:
        """Open the device briefly (format enumeration) so it initializes."""
        pass
