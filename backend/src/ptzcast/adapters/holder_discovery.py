"""Holder discovery strategies for the resource arbiter.

Ordered from most to least direct:
  FuserDiscovery          fuser on the device node / tcp port
  ProcessListDiscovery    ps scan for known consumer programs naming the resource
  SocketListingDiscovery  ss listening-socket table (ports only)
"""

import re
from typing import Iterable, List, Optional, Tuple
from ..ports.holder_discovery_port import HolderDiscoveryStrategy, ResourceId
from ..services.logging_service import LoggingService
from .command_runner import run_command


DISCOVERY_TIMEOUT = 3.0
CONSUMER_PROGRAMS: Tuple[str, ...] = ("ffmpeg", "gst-launch-1.0")

_SS_PID_PATTERN = re.compile(r"pid=(\d+)")


def parse_fuser_output(output: str) -> List[int]:
    """PIDs from fuser stdout; access-mode letters (e.g. '1234m') are ignored."""
    pids = []
    for token in (output or "").replace(":", " ").split():
        digits = re.match(r"^(\d+)[a-zA-Z]*$", token)
        if digits:
            pids.append(int(digits.group(1)))
    return pids


def parse_process_list(output: str, programs: Iterable[str], token: str) -> List[int]:
    """PIDs from `ps -eo pid=,args=` lines running one of programs with token in the arguments."""
    programs = tuple(programs)
    pids = []
    for line in (output or "").splitlines():
        parts = line.strip().split(None, 1)
        if len(parts) != 2 or not parts[0].isdigit():
            continue
        pid, args = int(parts[0]), parts[1]
        words = args.split()
        if not words:
            continue
        executable = words[0].rsplit("/", 1)[-1]
        if executable in programs and token in args:
            pids.append(pid)
    return pids


def parse_ss_output(output: str, port: int) -> List[int]:
    """PIDs from `ss -ltnpH` lines whose local address ends with :port."""
    pids = []
    suffix = f":{port}"
    for line in (output or "").splitlines():
        fields = line.split()
        if len(fields) < 4:
            continue
        if not fields[3].endswith(suffix):
            continue
        pids.extend(int(p) for p in _SS_PID_PATTERN.findall(line))
    return pids


class FuserDiscovery(HolderDiscoveryStrategy):
    """Direct query: `fuser /dev/videoN` or `fuser -n tcp PORT`."""

    name = "fuser"

    def __init__(self, logger: LoggingService, executable: str = "fuser"):
        self.logger = logger
        self.executable = executable

    async def find_holders(self, resource: ResourceId) -> List[int]:
        if resource.kind == "port":
            argv = [self.executable, "-n", "tcp", str(resource.value)]
        else:
            argv = [self.executable, str(resource.value)]
        output = await run_command(argv, timeout=DISCOVERY_TIMEOUT)
        # fuser exits 1 when nothing holds the resource
        if output.returncode != 0:
            return []
        return parse_fuser_output(output.stdout)


class ProcessListDiscovery(HolderDiscoveryStrategy):
    """Text scan of the process list for consumer programs that name the resource."""

    name = "ps"

    def __init__(
        self,
        logger: LoggingService,
        programs: Optional[Iterable[str]] = None,
        executable: str = "ps",
    ):
        self.logger = logger
        self.programs = tuple(programs) if programs is not None else CONSUMER_PROGRAMS
        self.executable = executable

    async def find_holders(self, resource: ResourceId) -> List[int]:
        output = await run_command([self.executable, "-eo", "pid=,args="], timeout=DISCOVERY_TIMEOUT)
        if output.returncode != 0:
            return []
        token = f":{resource.value}" if resource.kind == "port" else str(resource.value)
        return parse_process_list(output.stdout, self.programs, token)


class SocketListingDiscovery(HolderDiscoveryStrategy):
    """Listening TCP sockets from `ss`; not applicable to devices."""

    name = "ss"

    def __init__(self, logger: LoggingService, executable: str = "ss"):
        self.logger = logger
        self.executable = executable

    async def find_holders(self, resource: ResourceId) -> List[int]:
        if resource.kind != "port":
            return []
        output = await run_command([self.executable, "-ltnpH"], timeout=DISCOVERY_TIMEOUT)
        if output.returncode != 0:
            return []
        return parse_ss_output(output.stdout, int(resource.value))


def default_strategies(logger: LoggingService) -> List[HolderDiscoveryStrategy]:
    return [
        FuserDiscovery(logger),
        ProcessListDiscovery(logger),
        SocketListingDiscovery(logger),
    ]
