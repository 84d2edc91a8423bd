from __future__ import annotations

import pytest

from dxregress.domain.topology import PortBinding, container_filter
from dxregress.errors import DeadlineExceededError, EngineError
from dxregress.runtime.blocking import BlockingCallRunner
from dxregress.sandbox.lifecycle import BatchReport, SandboxLifecycleManager
from tests.fixtures.fakes import FakeEngine

pytestmark = pytest.mark.anyio

PREFIX = "dxregress-localenv-"


async def test_create_and_start_creates_then_starts(runner: BlockingCallRunner) -> None:
    engine = FakeEngine()
    manager = SandboxLifecycleManager(engine, runner)

    identifier = await manager.create_and_start("img", f"{PREFIX}sn1", (PortBinding(1, 2),))

    assert identifier == f"id-{PREFIX}sn1"
    assert [call for call in engine.calls if call[0] != "list"] == [
        ("create", f"{PREFIX}sn1"),
        ("start", f"{PREFIX}sn1"),
    ]


async def test_create_and_start_refuses_existing_name(runner: BlockingCallRunner) -> None:
    engine = FakeEngine(existing=[f"{PREFIX}sn1"])
    manager = SandboxLifecycleManager(engine, runner)

    with pytest.raises(EngineError, match="already exists"):
        await manager.create_and_start("img", f"{PREFIX}sn1")

    assert engine.actions("create") == []


async def test_create_and_start_ignores_names_sharing_a_prefix(runner: BlockingCallRunner) -> None:
    engine = FakeEngine(existing=[f"{PREFIX}sn10"])
    manager = SandboxLifecycleManager(engine, runner)

    await manager.create_and_start("img", f"{PREFIX}sn1")

    assert engine.actions("create") == [f"{PREFIX}sn1"]


async def test_create_and_start_treats_name_literally(runner: BlockingCallRunner) -> None:
    engine = FakeEngine(existing=["dxregressXlocalenv-sn1"])
    manager = SandboxLifecycleManager(engine, runner)

    await manager.create_and_start("img", "dxregress.localenv-sn1")

    assert engine.actions("create") == ["dxregress.localenv-sn1"]


async def test_stop_all_matching_treats_prefix_literally(runner: BlockingCallRunner) -> None:
    engine = FakeEngine(existing=["dx.env-sn1", "dxXenv-sn1", "dxxenv-sn2"])
    manager = SandboxLifecycleManager(engine, runner)

    report = await manager.stop_all_matching(container_filter("dx.env-"), timeout=5.0)

    assert report.succeeded == ["dx.env-sn1"]
    assert sorted(sandbox.name for sandbox in engine.sandboxes.values()) == ["dxXenv-sn1", "dxxenv-sn2"]


async def test_stop_all_matching_with_no_matches_does_no_work(runner: BlockingCallRunner) -> None:
    engine = FakeEngine(existing=["unrelated-container"])
    manager = SandboxLifecycleManager(engine, runner)

    report = await manager.stop_all_matching(container_filter(PREFIX), timeout=1.0)

    assert report == BatchReport(action="stop")
    assert report.ok and report.total == 0
    assert [action for action, _ in engine.calls] == ["list"]


async def test_stop_all_matching_stops_and_removes_each_match(runner: BlockingCallRunner) -> None:
    names = [f"{PREFIX}activator", f"{PREFIX}sn1", f"{PREFIX}sn2"]
    engine = FakeEngine(existing=[*names, "unrelated"])
    engine.sandboxes[f"id-{PREFIX}sn2"].running = False
    manager = SandboxLifecycleManager(engine, runner)

    report = await manager.stop_all_matching(container_filter(PREFIX), timeout=5.0)

    assert report.ok
    assert sorted(report.succeeded) == sorted(names)
    assert sorted(engine.actions("remove")) == sorted(names)
    assert sorted(engine.actions("stop")) == [f"{PREFIX}activator", f"{PREFIX}sn1"]
    assert [sandbox.name for sandbox in engine.sandboxes.values()] == ["unrelated"]


async def test_stop_and_remove_unpauses_paused_sandbox(runner: BlockingCallRunner) -> None:
    engine = FakeEngine(existing=[f"{PREFIX}sn1"])
    engine.sandboxes[f"id-{PREFIX}sn1"].paused = True
    manager = SandboxLifecycleManager(engine, runner)

    await manager.stop_and_remove(f"id-{PREFIX}sn1")

    assert [action for action, _ in engine.calls] == ["inspect", "unpause", "stop", "remove"]


async def test_stop_all_matching_aggregates_failures(runner: BlockingCallRunner) -> None:
    engine = FakeEngine(existing=[f"{PREFIX}activator", f"{PREFIX}sn1", f"{PREFIX}sn2"])
    engine.failures[("remove", f"{PREFIX}sn1")] = EngineError("device busy")
    manager = SandboxLifecycleManager(engine, runner)

    report = await manager.stop_all_matching(container_filter(PREFIX))

    assert not report.ok
    assert sorted(report.succeeded) == [f"{PREFIX}activator", f"{PREFIX}sn2"]
    assert [name for name, _ in report.failures] == [f"{PREFIX}sn1"]
    assert isinstance(report.first_error, EngineError)
    with pytest.raises(EngineError, match="device busy"):
        report.raise_first()


async def test_restart_all_matching_only_touches_role(runner: BlockingCallRunner) -> None:
    engine = FakeEngine(existing=[f"{PREFIX}activator", f"{PREFIX}sn1", f"{PREFIX}sn2", f"{PREFIX}SYS"])
    engine.failures[("restart", f"{PREFIX}sn2")] = EngineError("timeout")
    manager = SandboxLifecycleManager(engine, runner)

    report = await manager.restart_all_matching(container_filter(PREFIX, "sn"))

    assert report.succeeded == [f"{PREFIX}sn1"]
    assert [name for name, _ in report.failures] == [f"{PREFIX}sn2"]
    assert sorted(engine.actions("restart")) == [f"{PREFIX}sn1", f"{PREFIX}sn2"]


async def test_fan_out_deadline_raises(runner: BlockingCallRunner) -> None:
    engine = FakeEngine(existing=[f"{PREFIX}sn1", f"{PREFIX}sn2"])
    engine.delays["restart"] = 0.5
    manager = SandboxLifecycleManager(engine, runner)

    with pytest.raises(DeadlineExceededError):
        await manager.restart_all_matching(container_filter(PREFIX, "sn"), timeout=0.05)


async def test_build_image_consumes_progress_lines(runner: BlockingCallRunner) -> None:
    engine = FakeEngine(existing=[f"{PREFIX}sn1"])
    manager = SandboxLifecycleManager(engine, runner)

    lines = await manager.build_image(b"ctx", dockerfile="Dockerfile-dxregress", tag="img:dev")

    assert lines == 2
    assert engine.builds == [("img:dev", "Dockerfile-dxregress", b"ctx")]
