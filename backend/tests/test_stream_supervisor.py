"""Unit tests for StreamSupervisor lifecycle."""

import asyncio
import signal
import pytest
from conftest import FakeDiscovery, FakeKill
from ptzcast.domain.resource_arbiter import ResourceArbiter
from ptzcast.domain.results import ErrorCode
from ptzcast.domain.stream_config import DEFAULT_RTMP_URI
from ptzcast.domain.stream_supervisor import StreamState, StreamSupervisor, is_error_diagnostic
from ptzcast.ports.holder_discovery_port import ResourceId
from ptzcast.services.stream_config_service import StreamConfigService


SRT = {"protocol": "srt", "destination": "srt://10.0.0.5:9000"}


@pytest.fixture
def stream_config(config_dir, logger):
    return StreamConfigService(config_dir, logger)


@pytest.fixture
def kill():
    return FakeKill()


@pytest.fixture
def discovery():
    return FakeDiscovery("fuser")


@pytest.fixture
def make_supervisor(launcher, stream_config, message_bus, logger, discovery, kill):
    def make(grace_period=0, **kwargs):
        arbiter = ResourceArbiter([discovery], logger, grace_period=grace_period, kill=kill, own_pid=1)
        options = dict(start_probe=0.02, stop_timeout=1.0, auto_start_delay=0)
        options.update(kwargs)
        return StreamSupervisor("/dev/video0", launcher, arbiter, stream_config, message_bus, logger, **options)
    return make


def _of(events, topic):
    return [message for t, message in events if t == topic]


def test_error_markers():
    assert is_error_diagnostic("ERROR: from element /GstPipeline:pipeline0/GstSrtSink:srtsink0")
    assert is_error_diagnostic("WARNING: erroneous pipeline: no element \"nvvidconv\"")
    assert is_error_diagnostic("Could not open resource for reading and writing.")
    assert not is_error_diagnostic("Setting pipeline to PLAYING ...")
    assert not is_error_diagnostic("")


@pytest.mark.asyncio
async def test_start_runs_pipeline(make_supervisor, launcher, stream_config, events):
    supervisor = make_supervisor()
    result = await supervisor.start(SRT)

    assert result.success is True
    assert result.get("pid") == launcher.current.pid
    assert supervisor.state is StreamState.RUNNING
    assert "srtsink" in launcher.launches[0]
    assert "uri=srt://10.0.0.5:9000" in launcher.launches[0]
    assert stream_config.get_config().auto_start is True
    assert len(_of(events, "started")) == 1

    status = supervisor.get_status()
    assert status["isStreaming"] is True
    assert status["pid"] == launcher.current.pid
    assert status["pendingRestart"] is False
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_second_start_rejected(make_supervisor, launcher):
    supervisor = make_supervisor()
    await supervisor.start(SRT)
    result = await supervisor.start(SRT)

    assert result.success is False
    assert result.code is ErrorCode.ALREADY_RUNNING
    assert len(launcher.launches) == 1
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_concurrent_starts_spawn_once(make_supervisor, launcher):
    supervisor = make_supervisor()
    results = await asyncio.gather(supervisor.start(SRT), supervisor.start(SRT))

    assert sorted(r.success for r in results) == [False, True]
    assert [r.code for r in results if not r.success] == [ErrorCode.ALREADY_RUNNING]
    assert len(launcher.launches) == 1
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_missing_destination(make_supervisor, launcher):
    supervisor = make_supervisor()
    result = await supervisor.start({"protocol": "udp", "destination": ""})

    assert result.code is ErrorCode.MISSING_DESTINATION
    assert supervisor.state is StreamState.STOPPED
    assert launcher.launches == []


@pytest.mark.asyncio
async def test_rtmp_without_destination_uses_default(make_supervisor, launcher):
    supervisor = make_supervisor()
    result = await supervisor.start({"protocol": "rtmp", "destination": ""})

    assert result.success is True
    assert f"location={DEFAULT_RTMP_URI}" in launcher.launches[0]
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_unsupported_protocol_not_spawned(make_supervisor, launcher):
    supervisor = make_supervisor()
    result = await supervisor.start({"protocol": "webrtc", "destination": "x"})

    assert result.code is ErrorCode.UNSUPPORTED_PROTOCOL
    assert supervisor.state is StreamState.STOPPED
    assert launcher.launches == []


@pytest.mark.asyncio
async def test_spawn_failure(make_supervisor, launcher, events):
    launcher.spawn_error = FileNotFoundError("gst-launch-1.0")
    supervisor = make_supervisor()
    result = await supervisor.start(SRT)

    assert result.code is ErrorCode.EXTERNAL_PROCESS_FAILURE
    assert supervisor.state is StreamState.STOPPED
    assert len(_of(events, "error")) == 1


@pytest.mark.asyncio
async def test_requested_stop(make_supervisor, launcher, stream_config, events):
    supervisor = make_supervisor()
    await supervisor.start(SRT)
    process = launcher.current

    result = await supervisor.stop()
    assert result.success is True
    assert process.signals == [signal.SIGINT]
    assert await supervisor.wait_stopped(timeout=1)

    assert supervisor.state is StreamState.STOPPED
    stopped = _of(events, "stopped")
    assert len(stopped) == 1
    assert stopped[0].requested is True
    assert stopped[0].exit_code == 0
    assert stopped[0].to_dict()["requested"] is True
    assert stream_config.get_config().auto_start is False
    assert supervisor.get_status()["pid"] is None


@pytest.mark.asyncio
async def test_stop_escalates_to_kill(make_supervisor, launcher, events):
    launcher.exit_on_interrupt = False
    supervisor = make_supervisor(stop_timeout=0.01)
    await supervisor.start(SRT)
    process = launcher.current

    await supervisor.stop()
    assert await supervisor.wait_stopped(timeout=1)

    assert process.signals == [signal.SIGINT, signal.SIGKILL]
    stopped = _of(events, "stopped")[0]
    assert stopped.requested is True
    assert stopped.exit_code == -9


@pytest.mark.asyncio
async def test_crash_reported_as_unrequested(make_supervisor, launcher, stream_config, events):
    supervisor = make_supervisor()
    await supervisor.start(SRT)

    launcher.current.finish(1)
    assert await supervisor.wait_stopped(timeout=1)

    stopped = _of(events, "stopped")
    assert stopped[0].requested is False
    assert stopped[0].exit_code == 1
    assert supervisor.state is StreamState.STOPPED
    assert stream_config.get_config().auto_start is False


@pytest.mark.asyncio
async def test_stop_when_not_running(make_supervisor):
    result = await make_supervisor().stop()
    assert result.code is ErrorCode.NOT_RUNNING


@pytest.mark.asyncio
async def test_early_exit_is_launch_failure(make_supervisor, launcher, events):
    launcher.immediate_exit = (1, ["ERROR: from element /GstPipeline:pipeline0/GstV4l2Src:v4l2src0: Device is busy"])
    supervisor = make_supervisor()
    result = await supervisor.start(SRT)

    assert result.success is False
    assert result.code is ErrorCode.EXTERNAL_PROCESS_FAILURE
    assert "Device is busy" in result.error
    assert result.get("exitCode") == 1
    assert supervisor.state is StreamState.STOPPED
    assert len(_of(events, "error")) == 1
    assert _of(events, "started") == []
    assert _of(events, "stopped") == []


@pytest.mark.asyncio
async def test_silent_early_exit_is_error(make_supervisor, launcher, events):
    launcher.immediate_exit = (0, [])
    result = await make_supervisor().start(SRT)

    assert result.success is False
    assert _of(events, "error")[0].exit_code == 0


@pytest.mark.asyncio
async def test_early_exit_with_plain_output_is_logged(make_supervisor, launcher, events):
    launcher.immediate_exit = (0, ["Setting pipeline to PAUSED ...", "Got EOS from element \"pipeline0\"."])
    result = await make_supervisor().start(SRT)

    assert result.success is False
    assert _of(events, "error") == []
    assert "Got EOS" in _of(events, "log")[0].message


@pytest.mark.asyncio
async def test_diagnostics_classified(make_supervisor, launcher, events):
    launcher.startup_lines = ["Setting pipeline to PLAYING ..."]
    supervisor = make_supervisor()
    await supervisor.start(SRT)

    # startup output is released once the pipeline is confirmed running, before "started"
    topics = [t for t, _ in events]
    assert topics.index("log") < topics.index("started")

    launcher.current.emit("WARNING: from element /GstPipeline:pipeline0/GstSrtSink:srtsink0: retrying")
    launcher.current.emit("ERROR: from element /GstPipeline:pipeline0/GstSrtSink:srtsink0: Connection refused")
    await asyncio.sleep(0.01)

    assert "retrying" in _of(events, "log")[-1].message
    assert "Connection refused" in _of(events, "error")[-1].message
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_update_config_leaves_running_process_alone(make_supervisor, launcher, stream_config):
    supervisor = make_supervisor()
    await supervisor.start(SRT)

    result = supervisor.update_config({"bitrate": 2000000})
    assert result.success is True
    assert "Restart" in result.message
    assert result.get("config")["bitrate"] == 2000000
    assert launcher.current.signals == []
    assert len(launcher.launches) == 1

    status = supervisor.get_status()
    assert status["pendingRestart"] is True
    assert status["config"]["bitrate"] == 2000000
    assert stream_config.get_config().bitrate == 2000000
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_update_overlay_while_stopped(make_supervisor, stream_config):
    supervisor = make_supervisor()
    result = supervisor.update_overlay({"enabled": True, "title": "Live"})
    assert result.message == "Configuration updated."
    assert stream_config.get_config().overlay.title == "Live"
    assert supervisor.get_status()["pendingRestart"] is False


@pytest.mark.asyncio
async def test_start_evicts_device_and_preview_port(make_supervisor, discovery, kill):
    discovery.holders = {"device:/dev/video0": [321]}
    kill.alive = {321}
    supervisor = make_supervisor(preview_port=8081)
    await supervisor.start(SRT)

    assert discovery.queries == [ResourceId.device("/dev/video0"), ResourceId.port(8081)]
    assert kill.sent == [(321, signal.SIGTERM)]
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_auto_start(make_supervisor, stream_config, launcher):
    stream_config.merge_update({**SRT, "auto_start": True})
    supervisor = make_supervisor()
    task = supervisor.schedule_auto_start()
    assert task is not None
    await task

    assert supervisor.state is StreamState.RUNNING
    assert len(launcher.launches) == 1
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_no_auto_start_when_disabled(make_supervisor):
    assert make_supervisor().schedule_auto_start() is None


@pytest.mark.asyncio
async def test_shutdown_keeps_auto_start(make_supervisor, stream_config, events):
    supervisor = make_supervisor()
    await supervisor.start(SRT)
    await supervisor.shutdown()

    assert supervisor.state is StreamState.STOPPED
    assert _of(events, "stopped")[0].requested is True
    assert stream_config.get_config().auto_start is True


@pytest.mark.asyncio
async def test_shutdown_during_start_window_interrupts_process(make_supervisor, stream_config, launcher, events):
    supervisor = make_supervisor(start_probe=0.3)
    starting = asyncio.create_task(supervisor.start(SRT))
    await asyncio.sleep(0.05)
    assert supervisor.state is StreamState.STARTING

    await supervisor.shutdown()
    result = await starting

    assert result.success is False
    assert result.code is ErrorCode.NOT_RUNNING
    assert supervisor.state is StreamState.STOPPED
    assert launcher.current.signals == [signal.SIGINT]
    assert _of(events, "started") == []
    assert _of(events, "stopped")[0].requested is True
    assert stream_config.get_config().auto_start is False


@pytest.mark.asyncio
async def test_cancelled_auto_start_does_not_strand_starting(make_supervisor, stream_config, launcher):
    stream_config.merge_update({**SRT, "auto_start": True})
    supervisor = make_supervisor(start_probe=0.3)
    task = supervisor.schedule_auto_start()
    await asyncio.sleep(0.05)
    assert supervisor.state is StreamState.STARTING

    task.cancel()
    await asyncio.wait({task})
    assert await supervisor.wait_stopped(timeout=1.0)

    assert task.cancelled()
    assert supervisor.state is StreamState.STOPPED
    assert launcher.current.signals == [signal.SIGINT]
    assert (await supervisor.start(SRT)).success is True
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_shutdown_during_eviction_skips_launch(make_supervisor, launcher):
    supervisor = make_supervisor(grace_period=0.2)
    starting = asyncio.create_task(supervisor.start(SRT))
    await asyncio.sleep(0.05)

    await supervisor.shutdown()
    result = await starting

    assert result.code is ErrorCode.NOT_RUNNING
    assert launcher.launches == []
    assert supervisor.state is StreamState.STOPPED


@pytest.mark.asyncio
async def test_probe_encoders(make_supervisor):
    result = await make_supervisor().probe_encoders()
    assert result["success"] is True
    assert result["encoder"] == "nvv4l2h264enc"
