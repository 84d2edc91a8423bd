from __future__ import annotations

import asyncio
import functools
import logging
import time
from pathlib import Path

import pytest

from dxregress import cli
from dxregress.cli import _build_parser, main, run_interruptible
from dxregress.errors import CancellationError, ValidationError
from dxregress.runtime.blocking import BlockingCallRunner
from dxregress.runtime.context import build_runtime
from dxregress.runtime.settings import Settings
from tests.fixtures.fakes import FakeEngine


def test_up_parser_collects_repeated_wallets(tmp_path: Path) -> None:
    args = _build_parser().parse_args(
        ["up", str(tmp_path), "-w", "SYS,addr,u,p", "--wallet", "BTC,addr,u,p,10.0.0.9", "--image", "img:dev"]
    )

    assert args.command == "up"
    assert args.codebase == tmp_path
    assert args.wallets == ["SYS,addr,u,p", "BTC,addr,u,p,10.0.0.9"]
    assert args.image == "img:dev"
    assert args.genesis_patch is None


def test_down_parser(tmp_path: Path) -> None:
    args = _build_parser().parse_args(["down", str(tmp_path), "--genesis-patch", "genesis.patch"])

    assert args.command == "down"
    assert args.genesis_patch == Path("genesis.patch")


def test_command_is_required() -> None:
    with pytest.raises(SystemExit):
        _build_parser().parse_args([])


def test_main_reports_invalid_codebase(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    missing = tmp_path / "missing"

    with pytest.raises(SystemExit) as excinfo:
        main(["up", str(missing)])

    assert excinfo.value.code == f"invalid codebase directory: {missing}"


def test_main_requires_built_cli(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    with pytest.raises(SystemExit) as excinfo:
        main(["up", str(tmp_path)])

    assert "did you build first" in str(excinfo.value.code)


@pytest.mark.anyio
async def test_run_interruptible_returns_result() -> None:
    async def operation() -> str:
        return "ready"

    with BlockingCallRunner(max_workers=1) as runner:
        assert await run_interruptible(operation(), runner, interrupted=asyncio.Event()) == "ready"


@pytest.mark.anyio
async def test_interrupt_drains_and_prevents_further_calls() -> None:
    runner = BlockingCallRunner(max_workers=1)
    interrupted = asyncio.Event()
    calls: list[str] = []

    def step(name: str) -> None:
        time.sleep(0.1)
        calls.append(name)

    async def operation() -> None:
        await runner.run(step, "first")
        await runner.run(step, "second")

    asyncio.get_running_loop().call_later(0.02, interrupted.set)

    with pytest.raises(CancellationError, match="dxregress down"):
        await run_interruptible(operation(), runner, interrupted=interrupted)

    assert calls == ["first"]
    assert runner.closed


@pytest.mark.anyio
async def test_down_removes_sandboxes_without_wallet_warning(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    engine = FakeEngine(existing=["dxregress-localenv-activator", "dxregress-localenv-sn1"])
    monkeypatch.setattr(cli, "docker_preflight", lambda *args, **kwargs: None)
    monkeypatch.setattr(cli, "build_runtime", functools.partial(build_runtime, engine=engine, host_ip="10.0.0.5"))
    settings = Settings(DX_CONFIG_DIR=tmp_path)  # type: ignore[call-arg]

    with caplog.at_level(logging.INFO):
        await cli._down(_build_parser().parse_args(["down", str(tmp_path)]), settings)

    assert engine.sandboxes == {}
    assert not [record for record in caplog.records if "no wallets specified" in record.getMessage()]


@pytest.mark.anyio
async def test_up_without_wallets_warns(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    def refuse(*args: object, **kwargs: object) -> None:
        raise ValidationError("runtime not wanted")

    monkeypatch.setattr(cli, "docker_preflight", lambda *args, **kwargs: None)
    monkeypatch.setattr(cli, "build_runtime", refuse)
    settings = Settings(DX_CONFIG_DIR=tmp_path)  # type: ignore[call-arg]

    with caplog.at_level(logging.WARNING), pytest.raises(ValidationError, match="runtime not wanted"):
        await cli._up(_build_parser().parse_args(["up", str(tmp_path), "--image", "img:dev"]), settings)

    assert [record.levelno for record in caplog.records if "no wallets specified" in record.getMessage()] == [
        logging.WARNING
    ]
