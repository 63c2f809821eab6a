"""Pytest fixtures and port fakes for ptzcast tests."""

import asyncio
import json
import signal
import pytest
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import sys
backend_src = Path(__file__).resolve().parent.parent / "src"
sys.path.insert(0, str(backend_src))

from ptzcast.ports.control_utility_port import CommandOutput, ControlUtilityPort
from ptzcast.ports.holder_discovery_port import HolderDiscoveryStrategy, ResourceId
from ptzcast.ports.pipeline_launcher_port import PipelineLauncherPort, PipelineProcess
from ptzcast.ports.preview_source_port import PreviewSourcePort
from ptzcast.services.logging_service import LoggingService
from ptzcast.services.message_bus import MessageBus


class FakeControlUtility(ControlUtilityPort):
    """Remembers set values and answers get queries like v4l2-ctl."""

    def __init__(self):
        self.values: Dict[str, int] = {}
        self.calls: List[Tuple[str, str, Optional[int]]] = []
        self.stderr_for: Dict[str, str] = {}
        self.returncode_for: Dict[str, int] = {}
        self.get_output: Optional[str] = None
        self.missing = False

    async def set_control(self, device_path: str, name: str, value: int) -> CommandOutput:
        if self.missing:
            raise FileNotFoundError("v4l2-ctl")
        self.calls.append(("set", name, value))
        code = self.returncode_for.get(name, 0)
        stderr = self.stderr_for.get(name, "")
        if code == 0 and not stderr:
            self.values[name] = value
        return CommandOutput(returncode=code, stderr=stderr)

    async def get_control(self, device_path: str, name: str) -> CommandOutput:
        self.calls.append(("get", name, None))
        if self.get_output is not None:
            return CommandOutput(returncode=0, stdout=self.get_output)
        if name not in self.values:
            return CommandOutput(returncode=0, stdout="")
        return CommandOutput(returncode=0, stdout=f"{name}: {self.values[name]}\n")

    async def list_all(self, device_path: str) -> CommandOutput:
        return CommandOutput(returncode=0, stdout="Driver Info:\n\tDriver name : uvcvideo\n")

    async def wake(self, device_path: str) -> CommandOutput:
        return CommandOutput(returncode=0, stdout="ioctl: VIDIOC_ENUM_FMT\n")

    def set_order(self) -> List[str]:
        return [name for kind, name, _ in self.calls if kind == "set"]


class FakePipelineProcess(PipelineProcess):
    """Pipeline process driven by the test: emit() lines, finish() to exit."""

    def __init__(self, pid: int, exit_on_interrupt: bool = True):
        self.pid = pid
        self.signals: List[int] = []
        self.exit_on_interrupt = exit_on_interrupt
        self._lines: asyncio.Queue = asyncio.Queue()
        self._exit = asyncio.get_running_loop().create_future()

    def emit(self, line: str):
        self._lines.put_nowait(line)

    def finish(self, code: int):
        if not self._exit.done():
            self._lines.put_nowait(None)
            self._exit.set_result(code)

    @property
    def exited(self) -> bool:
        return self._exit.done()

    async def wait(self) -> int:
        return await self._exit

    def send_signal(self, sig: int) -> None:
        if self._exit.done():
            raise ProcessLookupError(self.pid)
        self.signals.append(sig)
        if sig == signal.SIGKILL:
            self.finish(-9)
        elif self.exit_on_interrupt:
            self.finish(0)

    async def diagnostics(self):
        while True:
            line = await self._lines.get()
            if line is None:
                return
            yield line


class FakeLauncher(PipelineLauncherPort):
    """Records launches; can fail to spawn or exit straight away."""

    def __init__(self):
        self.launches: List[List[str]] = []
        self.processes: List[FakePipelineProcess] = []
        self.spawn_error: Optional[OSError] = None
        self.immediate_exit: Optional[Tuple[int, List[str]]] = None
        self.startup_lines: List[str] = []
        self.exit_on_interrupt = True

    async def launch(self, argv: List[str]) -> PipelineProcess:
        if self.spawn_error is not None:
            raise self.spawn_error
        self.launches.append(list(argv))
        process = FakePipelineProcess(4000 + len(self.launches), self.exit_on_interrupt)
        for line in self.startup_lines:
            process.emit(line)
        if self.immediate_exit is not None:
            code, lines = self.immediate_exit
            for line in lines:
                process.emit(line)
            process.finish(code)
        self.processes.append(process)
        return process

    async def probe_encoders(self, candidates: List[str]) -> Dict[str, Any]:
        return {"success": True, "encoder": candidates[0], "available": candidates[:1]}

    @property
    def current(self) -> FakePipelineProcess:
        return self.processes[-1]


class FakeDiscovery(HolderDiscoveryStrategy):
    """Discovery strategy with canned answers per resource."""

    def __init__(self, name: str, holders: Optional[Dict[str, List[int]]] = None, error: Optional[Exception] = None):
        self.name = name
        self.holders = holders or {}
        self.error = error
        self.queries: List[ResourceId] = []

    async def find_holders(self, resource: ResourceId) -> List[int]:
        self.queries.append(resource)
        if self.error is not None:
            raise self.error
        return list(self.holders.get(str(resource), []))


class FakeKill:
    """Stand-in for os.kill over a set of live PIDs."""

    def __init__(self, alive=(), stubborn=()):
        self.alive = set(alive)
        self.stubborn = set(stubborn)
        self.sent: List[Tuple[int, int]] = []

    def __call__(self, pid: int, sig: int):
        if pid not in self.alive:
            raise ProcessLookupError(pid)
        if sig == 0:
            return
        self.sent.append((pid, sig))
        if sig == signal.SIGKILL or pid not in self.stubborn:
            self.alive.discard(pid)


class FakePreviewSource(PreviewSourcePort):
    def __init__(self, frames: List[bytes]):
        self._frames = frames
        self.opened_with = None
        self.closed = False

    async def open(self, device_path: str, width: int, height: int, framerate: int) -> None:
        self.opened_with = (device_path, width, height, framerate)

    async def frames(self):
        for frame in self._frames:
            yield frame

    async def close(self) -> None:
        self.closed = True


FAST_APP_CONFIG = {
    "camera_device": "/dev/video0",
    "camera_wake_delay": 0,
    "control_settle_delay": 0,
    "motion_settle_delay": 0,
    "eviction_grace_period": 0,
    "stream_start_probe": 0.05,
    "stream_stop_timeout": 1.0,
    "auto_start_delay": 0,
}


@pytest.fixture
def logger():
    return LoggingService()


@pytest.fixture
def message_bus(logger):
    return MessageBus(logger)


@pytest.fixture
def config_dir(tmp_path):
    return tmp_path / "config"


@pytest.fixture
def fast_config_dir(config_dir):
    """Config dir whose app.json disables every settle delay."""
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "app.json").write_text(json.dumps(FAST_APP_CONFIG))
    return config_dir


@pytest.fixture
def utility():
    return FakeControlUtility()


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def events(message_bus):
    """Every bus message as (topic, message), in publish order."""
    received: List[Tuple[str, Any]] = []
    message_bus.subscribe_many(
        ("started", "stopped", "error", "log", "controlResult"),
        lambda topic, message: received.append((topic, message)),
    )
    return received
