"""gst-launch-1.0 adapter for the outbound stream pipeline."""

import asyncio
from typing import Any, AsyncIterator, Dict, List
from ..ports.pipeline_launcher_port import PipelineLauncherPort, PipelineProcess
from ..services.logging_service import LoggingService
from .command_runner import run_command


class GstPipelineProcess(PipelineProcess):
    """A running gst-launch-1.0 process; stdout and stderr are merged into one diagnostic stream."""
    
    def __init__(self, process: asyncio.subprocess.Process):
        self._process = process
        self.pid = process.pid
    
    async def wait(self) -> int:
        return await self._process.wait()
    
    def send_signal(self, sig: int) -> None:
        if self._process.returncode is not None:
            raise ProcessLookupError(f"pid {self.pid} already exited")
        self._process.send_signal(sig)
    
    async def diagnostics(self) -> AsyncIterator[str]:
        stream = self._process.stdout
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                break
            yield line.decode(errors="replace")


class GstLaunchAdapter(PipelineLauncherPort):
    """Launches pipelines with gst-launch-1.0 and probes elements with gst-inspect-1.0."""
    
    def __init__(
        self,
        logger: LoggingService,
        executable: str = "gst-launch-1.0",
        inspect_executable: str = "gst-inspect-1.0",
    ):
        self.logger = logger
        self.executable = executable
        self.inspect_executable = inspect_executable
    
    async def launch(self, argv: List[str]) -> PipelineProcess:
        # -e: send EOS on interrupt so the muxer writes a clean end of stream
        process = await asyncio.create_subprocess_exec(
            self.executable, "-e", *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        self.logger.debug(f"[Stream] Launched {self.executable} pid {process.pid}")
        return GstPipelineProcess(process)
    
    async def probe_encoders(self, candidates: List[str]) -> Dict[str, Any]:
        available = []
        for element in candidates:
            try:
                output = await run_command([self.inspect_executable, element], timeout=10)
            except asyncio.TimeoutError:
                self.logger.warning(f"[Stream] {self.inspect_executable} {element} timed out")
                continue
            if output.returncode == 0:
                available.append(element)
        if not available:
            return {"success": False, "error": "No H.264 encoder found", "available": []}
        return {
            "success": True,
            "encoder": available[0],
            "available": available,
            "message": f"{available[0]} available",
        }
