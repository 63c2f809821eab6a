"""Stream process supervisor: owns the single gst-launch pipeline process.

State machine:
    STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED
    RUNNING -> STOPPED  (crash: exit without a stop in flight)

Only the process's own exit moves the supervisor back to STOPPED. Config
updates never touch a running process; they apply on the next start.
"""

import asyncio
import logging
import re
import signal
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from .pipeline_builder import PipelineBuildError, build_pipeline, render_argv
from .resource_arbiter import ResourceArbiter
from .results import ErrorCode, OperationResult
from .stream_config import ENCODERS, StreamConfig
from ..ports.pipeline_launcher_port import PipelineLauncherPort, PipelineProcess
from ..services.logging_service import LoggingService
from ..services.message_bus import MessageBus
from ..services.stream_config_service import StreamConfigService


# Error-level markers in gst-launch output; everything else is normal chatter
_ERROR_MARKERS = re.compile(r"\b(?:ERROR|CRITICAL|FATAL)\b|erroneous pipeline|[Cc]ould not")


def is_error_diagnostic(text: str) -> bool:
    return bool(_ERROR_MARKERS.search(text or ""))


class StreamState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class StreamEventKind(Enum):
    STARTED = "started"
    STOPPED = "stopped"
    ERROR = "error"
    LOG = "log"


STREAM_TOPICS = tuple(kind.value for kind in StreamEventKind)


@dataclass
class StreamEvent:
    """Lifecycle event published on the message bus under topic kind.value."""
    kind: StreamEventKind
    message: Optional[str] = None
    exit_code: Optional[int] = None
    requested: Optional[bool] = None
    pid: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"event": self.kind.value, "timestamp": self.timestamp}
        if self.message is not None:
            data["message"] = self.message
        if self.exit_code is not None:
            data["exitCode"] = self.exit_code
        if self.requested is not None:
            data["requested"] = self.requested
        if self.pid is not None:
            data["pid"] = self.pid
        return data


@dataclass
class ProcessHandle:
    """The running pipeline process and the config snapshot it was started with."""
    pid: int
    started_at: float
    process: PipelineProcess
    config: StreamConfig
    argv: List[str]
    # Diagnostic lines are held back until the start probe passes
    buffered: Optional[List[str]] = field(default_factory=list)
    exit_code: Optional[int] = None
    watcher: Optional[asyncio.Task] = None


class StreamSupervisor:
    """Start/stop/restart the outbound stream pipeline and publish its lifecycle."""

    def __init__(
        self,
        device_path: str,
        launcher: PipelineLauncherPort,
        arbiter: ResourceArbiter,
        stream_config_service: StreamConfigService,
        message_bus: MessageBus,
        logger: LoggingService,
        preview_port: Optional[int] = None,
        start_probe: float = 0.5,
        stop_timeout: float = 5.0,
        auto_start_delay: float = 3.0,
    ):
        self.device_path = device_path
        self.launcher = launcher
        self.arbiter = arbiter
        self.stream_config_service = stream_config_service
        self.message_bus = message_bus
        self.logger = logger
        self.preview_port = preview_port
        self.start_probe = start_probe
        self.stop_timeout = stop_timeout
        self.auto_start_delay = auto_start_delay

        self._state = StreamState.STOPPED
        self._handle: Optional[ProcessHandle] = None
        self._stop_requested = False
        self._shutting_down = False
        self._escalation: Optional[asyncio.Task] = None
        self._auto_start_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def is_streaming(self) -> bool:
        return self._state is StreamState.RUNNING

    @property
    def is_active(self) -> bool:
        """True while a pipeline process exists or is being started."""
        return self._state is not StreamState.STOPPED

    # -- lifecycle ------------------------------------------------------

    async def start(self, partial: Optional[Dict[str, Any]] = None) -> OperationResult:
        """Merge partial config, evict device holders, launch the pipeline."""
        if self._state is not StreamState.STOPPED:
            return OperationResult.fail(
                ErrorCode.ALREADY_RUNNING, "Stream already running", state=self._state.value
            )

        config = self.stream_config_service.merge_update(partial or {})
        if config.requires_destination and not config.destination:
            return OperationResult.fail(
                ErrorCode.MISSING_DESTINATION, f"No destination URL specified for {config.protocol}"
            )

        self._set_state(StreamState.STARTING)
        try:
            return await self._start(config)
        except asyncio.CancelledError:
            self.logger.warning("[Stream] Stream start cancelled")
            self._abandon_start()
            raise
        except Exception as e:
            self.logger.error(f"[Stream] Unexpected error starting stream: {e}", exc_info=True)
            self._abandon_start()
            return OperationResult.fail(ErrorCode.EXTERNAL_PROCESS_FAILURE, str(e))

    def _abandon_start(self):
        """Leave STARTING: back to STOPPED, or interrupt a process that was already launched."""
        if self._state is not StreamState.STARTING:
            return
        if self._handle is None:
            self._set_state(StreamState.STOPPED)
        else:
            self._interrupt(self._handle)

    async def _start(self, config: StreamConfig) -> OperationResult:
        await self.arbiter.free_device(self.device_path)
        if self.preview_port:
            await self.arbiter.free_port(self.preview_port)

        if self._shutting_down:
            self._set_state(StreamState.STOPPED)
            return OperationResult.fail(ErrorCode.NOT_RUNNING, "Application shutting down; stream not started")

        try:
            descriptor = build_pipeline(config, self.device_path)
        except PipelineBuildError as e:
            self.logger.error(f"[Pipeline] {e}")
            self._set_state(StreamState.STOPPED)
            return OperationResult.fail(e.code, str(e))

        argv = render_argv(descriptor)
        self.logger.info(f"[Stream] Starting pipeline: {' '.join(argv)}")
        try:
            process = await self.launcher.launch(argv)
        except OSError as e:
            self.logger.error(f"[Stream] Failed to launch pipeline: {e}")
            self._set_state(StreamState.STOPPED)
            self._publish(StreamEvent(StreamEventKind.ERROR, message=str(e)))
            return OperationResult.fail(ErrorCode.EXTERNAL_PROCESS_FAILURE, str(e))

        handle = ProcessHandle(
            pid=process.pid,
            started_at=time.time(),
            process=process,
            config=config,
            argv=argv,
        )
        self._handle = handle
        self._stop_requested = False
        handle.watcher = asyncio.create_task(self._watch(handle))

        done, _ = await asyncio.wait({handle.watcher}, timeout=self.start_probe)
        if done and handle.buffered is not None:
            diagnostic = "\n".join(handle.buffered) or f"Pipeline exited with code {handle.exit_code}"
            return OperationResult.fail(
                ErrorCode.EXTERNAL_PROCESS_FAILURE, diagnostic, exitCode=handle.exit_code
            )
        if self._shutting_down or self._state is not StreamState.STARTING:
            # shutdown arrived during the probe window; the process never counts as running
            self._abandon_start()
            return OperationResult.fail(ErrorCode.NOT_RUNNING, "Application shutting down; stream not started")

        self._set_state(StreamState.RUNNING)
        pending, handle.buffered = handle.buffered or [], None
        for line in pending:
            self._emit_diagnostic(line)
        self.stream_config_service.set_auto_start(True)
        handle.config = self.stream_config_service.get_config()
        self.logger.info(f"[Stream] Pipeline running (pid {handle.pid})")
        self._publish(StreamEvent(StreamEventKind.STARTED, pid=handle.pid))
        return OperationResult.ok("Stream started", pid=handle.pid)

    async def stop(self) -> OperationResult:
        """Interrupt the pipeline; its exit completes the transition to STOPPED."""
        if self._state is not StreamState.RUNNING or self._handle is None:
            return OperationResult.fail(ErrorCode.NOT_RUNNING, "No stream running", state=self._state.value)

        handle = self._handle
        self._interrupt(handle)
        return OperationResult.ok("Stream stopping", pid=handle.pid)

    def _interrupt(self, handle: ProcessHandle):
        """Request a stop of the handle's process; its exit is reported as requested."""
        self._stop_requested = True
        self._set_state(StreamState.STOPPING)
        if handle.buffered is not None:
            pending, handle.buffered = handle.buffered, None
            for line in pending:
                self._emit_diagnostic(line)
        try:
            # SIGINT lets gst-launch -e push EOS so the muxer finalizes
            handle.process.send_signal(signal.SIGINT)
        except ProcessLookupError:
            self.logger.debug(f"[Stream] Pipeline pid {handle.pid} already gone")
        self._escalation = asyncio.create_task(self._escalate(handle))

    async def _escalate(self, handle: ProcessHandle):
        await asyncio.sleep(self.stop_timeout)
        if self._handle is handle:
            self.logger.warning(f"[Stream] Pipeline pid {handle.pid} ignored SIGINT, killing")
            try:
                handle.process.send_signal(signal.SIGKILL)
            except ProcessLookupError:
                pass

    async def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        """Wait for the current process (if any) to exit."""
        handle = self._handle
        if handle is None or handle.watcher is None:
            return True
        done, _ = await asyncio.wait({handle.watcher}, timeout=timeout)
        return bool(done)

    async def shutdown(self):
        """Stop the pipeline on application exit without clearing auto-start."""
        self._shutting_down = True
        task = self._auto_start_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.wait({task}, timeout=self.stop_timeout)
        handle = self._handle
        if handle is None:
            return
        if self._state is StreamState.RUNNING:
            await self.stop()
        elif self._state is StreamState.STARTING:
            self._interrupt(handle)
        if not await self.wait_stopped(timeout=self.stop_timeout + 1.0):
            self.logger.warning("[Stream] Pipeline still running at shutdown")

    # -- process watching -------------------------------------------------

    async def _watch(self, handle: ProcessHandle):
        pump = asyncio.create_task(self._pump(handle))
        try:
            code = await handle.process.wait()
        except Exception as e:
            self.logger.error(f"[Stream] Error waiting for pipeline pid {handle.pid}: {e}")
            code = -1
        try:
            await asyncio.wait_for(pump, timeout=1.0)
        except asyncio.TimeoutError:
            self.logger.debug("[Stream] Diagnostic reader did not finish after exit")
        except Exception as e:
            self.logger.debug(f"[Stream] Diagnostic reader failed: {e}")
        handle.exit_code = code
        self._on_exit(handle, code)

    async def _pump(self, handle: ProcessHandle):
        async for line in handle.process.diagnostics():
            line = line.rstrip()
            if not line:
                continue
            if handle.buffered is not None:
                handle.buffered.append(line)
            else:
                self._emit_diagnostic(line)

    def _emit_diagnostic(self, line: str):
        if is_error_diagnostic(line):
            self.logger.error(f"[Stream] {line}")
            self._publish(StreamEvent(StreamEventKind.ERROR, message=line))
        else:
            self.logger.debug(f"[Stream] {line}")
            self._publish(StreamEvent(StreamEventKind.LOG, message=line))

    def _on_exit(self, handle: ProcessHandle, code: int):
        if self._handle is not handle:
            return
        self._handle = None
        if self._escalation is not None:
            self._escalation.cancel()
            self._escalation = None
        self._set_state(StreamState.STOPPED)

        if handle.buffered is not None:
            # Exited before the start probe passed: a launch failure, not a stop
            text = "\n".join(handle.buffered)
            kind = StreamEventKind.ERROR if not text or is_error_diagnostic(text) else StreamEventKind.LOG
            self.logger.error(f"[Stream] Pipeline exited during startup with code {code}")
            self.logger.tool_output("Stream", "gst-launch-1.0", text, logging.ERROR)
            self._publish(StreamEvent(kind, message=text or f"Pipeline exited with code {code}", exit_code=code))
            return

        requested = self._stop_requested
        self._stop_requested = False
        if requested:
            self.logger.info(f"[Stream] Pipeline exited with code {code}")
        else:
            self.logger.warning(f"[Stream] Pipeline exited unexpectedly with code {code}")
        if not self._shutting_down:
            self.stream_config_service.set_auto_start(False)
        self._publish(StreamEvent(StreamEventKind.STOPPED, exit_code=code, requested=requested, pid=handle.pid))

    # -- configuration ----------------------------------------------------

    def update_config(self, partial: Optional[Dict[str, Any]]) -> OperationResult:
        """Merge and persist stream settings; a running stream keeps its snapshot."""
        config = self.stream_config_service.merge_update(partial or {})
        return OperationResult.ok(self._update_message(), config=config.to_dict())

    def update_overlay(self, partial: Optional[Dict[str, Any]]) -> OperationResult:
        """Merge and persist overlay settings; a running stream keeps its snapshot."""
        config = self.stream_config_service.merge_overlay(partial or {})
        return OperationResult.ok(self._update_message(), config=config.to_dict())

    def _update_message(self) -> str:
        if self.is_active:
            return "Configuration updated. Restart stream to apply changes."
        return "Configuration updated."

    def get_status(self) -> Dict[str, Any]:
        """Read-only snapshot, safe in any state."""
        config = self.stream_config_service.get_config()
        handle = self._handle
        return {
            "isStreaming": self.is_streaming,
            "state": self._state.value,
            "pid": handle.pid if handle else None,
            "startedAt": handle.started_at if handle else None,
            "pendingRestart": bool(handle and handle.config != config),
            "config": config.to_dict(),
        }

    def schedule_auto_start(self, delay: Optional[float] = None) -> Optional[asyncio.Task]:
        """Start the stream after a delay if it was streaming when last stopped by shutdown."""
        if not self.stream_config_service.get_config().auto_start:
            return None
        delay = self.auto_start_delay if delay is None else delay
        self.logger.info(f"[App] Auto-start enabled, starting stream in {delay:.1f}s")
        self._auto_start_task = asyncio.create_task(self._auto_start(delay))
        return self._auto_start_task

    async def _auto_start(self, delay: float):
        await asyncio.sleep(delay)
        if self._state is not StreamState.STOPPED:
            return
        result = await self.start()
        if result.success:
            self.logger.info("[App] Auto-started stream")
        else:
            self.logger.warning(f"[App] Auto-start failed: {result.error}")

    async def probe_encoders(self) -> Dict[str, Any]:
        """Which supported encoder elements are installed."""
        try:
            return await self.launcher.probe_encoders(list(ENCODERS))
        except OSError as e:
            self.logger.warning(f"[Stream] Encoder probe failed: {e}")
            return {"success": False, "error": str(e), "available": []}

    # -- helpers ----------------------------------------------------------

    def _set_state(self, state: StreamState):
        if state is not self._state:
            self.logger.debug(f"[Stream] {self._state.value} -> {state.value}")
        self._state = state

    def _publish(self, event: StreamEvent):
        self.message_bus.publish(event.kind.value, event)
