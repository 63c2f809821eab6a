"""v4l2-ctl adapter for camera control get/set."""

from ..ports.control_utility_port import CommandOutput, ControlUtilityPort
from ..services.logging_service import LoggingService
from .command_runner import run_command


class V4L2CtlAdapter(ControlUtilityPort):
    """Runs v4l2-ctl once per request.
    
    Set/get calls have no timeout: a hung v4l2-ctl blocks that call only.
    """
    
    def __init__(self, logger: LoggingService, executable: str = "v4l2-ctl"):
        self.logger = logger
        self.executable = executable
    
    async def set_control(self, device_path: str, name: str, value: int) -> CommandOutput:
        argv = [self.executable, "-d", device_path, f"--set-ctrl={name}={value}"]
        self.logger.debug(f"[Control] Executing: {' '.join(argv)}")
        return await run_command(argv)
    
    async def get_control(self, device_path: str, name: str) -> CommandOutput:
        return await run_command([self.executable, "-d", device_path, f"--get-ctrl={name}"])
    
    async def list_all(self, device_path: str) -> CommandOutput:
        return await run_command([self.executable, "-d", device_path, "--all"], timeout=5)
    
    async def wake(self, device_path: str) -> CommandOutput:
        return await run_command([self.executable, "-d", device_path, "--list-formats-ext"], timeout=5)
