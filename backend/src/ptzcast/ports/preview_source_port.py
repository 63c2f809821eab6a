"""Preview source port interface for the live MJPEG preview transcoder."""

from abc import ABC, abstractmethod
from typing import AsyncIterator


class PreviewSourcePort(ABC):
    """Port interface for a running preview transcoder."""
    
    @abstractmethod
    async def open(self, device_path: str, width: int, height: int, framerate: int) -> None:
        """Start the transcoder on the device.
        
        Raises:
            OSError: if the transcoder cannot be started
        """
        pass
    
    @abstractmethod
    def frames(self) -> AsyncIterator[bytes]:
        """Iterate complete JPEG frames until the transcoder exits."""
        pass
    
    @abstractmethod
    async def close(self) -> None:
        """Stop the transcoder."""
        pass
