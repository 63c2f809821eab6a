"""Pipeline launcher port interface for the external media pipeline tool."""

from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Dict, Any


class PipelineProcess(ABC):
    """A launched external pipeline process."""
    
    pid: int
    
    @abstractmethod
    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        pass
    
    @abstractmethod
    def send_signal(self, sig: int) -> None:
        """Send a signal; raises ProcessLookupError if the process is gone."""
        pass
    
    @abstractmethod
    def diagnostics(self) -> AsyncIterator[str]:
        """Iterate diagnostic output lines until the process closes its output."""
        pass


class PipelineLauncherPort(ABC):
    """Port interface for launching and probing the pipeline tool."""
    
    @abstractmethod
    async def launch(self, argv: List[str]) -> PipelineProcess:
        """Launch the pipeline tool with the rendered pipeline arguments.
        
        Raises:
            OSError: if the executable is missing or cannot be started
        """
        pass
    
    @abstractmethod
    async def probe_encoders(self, candidates: List[str]) -> Dict[str, Any]:
        """Report which encoder elements are installed."""
        pass
