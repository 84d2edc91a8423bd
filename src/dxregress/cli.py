"""``dxregress`` command line: bring a regression environment up or down."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from collections.abc import Coroutine, Sequence
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any, TypeVar

from dxregress.domain.wallets import WALLET_PARAMETER_FORMAT
from dxregress.errors import CancellationError, DxregressError, ValidationError
from dxregress.observability.logging import configure_logging
from dxregress.runtime.blocking import BlockingCallRunner
from dxregress.runtime.codebase import GenesisPatcher, docker_preflight, require_cli_binary, validate_codebase
from dxregress.runtime.context import build_runtime
from dxregress.runtime.settings import Settings

logger = logging.getLogger("dxregress.cli")

T = TypeVar("T")


def _package_version() -> str:
    try:
        return version("dxregress")
    except PackageNotFoundError:
        return "unknown"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dxregress",
        description="Create a local Blocknet regression environment: an activator, service nodes and wallets.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {_package_version()}")
    commands = parser.add_subparsers(dest="command", required=True)

    up = commands.add_parser("up", help="Build the node image and start the environment.")
    up.add_argument("codebase", type=Path, help="Path to the blocknet codebase.")
    up.add_argument(
        "-w",
        "--wallet",
        action="append",
        default=[],
        dest="wallets",
        metavar="SPEC",
        help=f"Wallet to include, repeatable: {WALLET_PARAMETER_FORMAT}",
    )
    up.add_argument("--image", help="Use this prebuilt node image instead of building from the codebase.")
    up.add_argument("--genesis-patch", type=Path, help="Patch applied to the codebase before building.")
    up.add_argument("--wallet-data", type=Path, help="wallet.dat baked into the node image.")

    down = commands.add_parser("down", help="Stop and remove the environment.")
    down.add_argument("codebase", type=Path, help="Path to the blocknet codebase.")
    down.add_argument("--genesis-patch", type=Path, help="Patch to remove from the codebase.")
    return parser


async def run_interruptible(
    operation: Coroutine[Any, Any, T],
    runner: BlockingCallRunner,
    *,
    interrupted: asyncio.Event | None = None,
) -> T:
    """Race ``operation`` against SIGINT.

    On interrupt the runner stops accepting calls, the operation is cancelled
    and calls already in flight are drained before :class:`CancellationError`
    is raised.
    """

    loop = asyncio.get_running_loop()
    interrupt = interrupted or asyncio.Event()
    handler_installed = False
    if interrupted is None:
        try:
            loop.add_signal_handler(signal.SIGINT, interrupt.set)
            handler_installed = True
        except (NotImplementedError, RuntimeError):
            logger.debug("SIGINT handler unavailable; interrupts are not observed")

    op_task: asyncio.Task[T] = asyncio.create_task(operation)
    interrupt_task = asyncio.create_task(interrupt.wait())
    try:
        await asyncio.wait({op_task, interrupt_task}, return_when=asyncio.FIRST_COMPLETED)
        if op_task.done():
            return op_task.result()

        logger.warning("interrupt received, stopping after in-flight calls finish")
        runner.close()
        op_task.cancel()
        try:
            await op_task
        except (asyncio.CancelledError, DxregressError) as exc:
            logger.debug("operation ended after interrupt", extra={"data": {"error": repr(exc)}})
        await asyncio.to_thread(runner.drain)
        raise CancellationError("interrupted; run 'dxregress down' to remove any sandboxes left behind")
    finally:
        interrupt_task.cancel()
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)


async def _up(args: argparse.Namespace, settings: Settings) -> None:
    codebase = validate_codebase(args.codebase)
    build = args.image is None
    if build:
        require_cli_binary(codebase)
    docker_preflight(settings.sandbox.docker_binary)
    if args.genesis_patch is not None:
        GenesisPatcher().apply(args.genesis_patch, codebase)
    wallet_data: bytes | None = None
    if args.wallet_data is not None:
        try:
            wallet_data = args.wallet_data.read_bytes()
        except OSError as exc:
            raise ValidationError(f"cannot read wallet data {args.wallet_data}: {exc}") from exc
    if not args.wallets:
        logger.warning("no wallets specified; use --wallet %s", WALLET_PARAMETER_FORMAT)

    runtime = build_runtime(
        settings,
        raw_wallets=args.wallets,
        image=args.image,
        codebase=codebase if build else None,
        wallet_data=wallet_data,
    )
    try:
        await run_interruptible(runtime.environment.start(), runtime.runner)
    finally:
        await runtime.aclose()

    for line in runtime.environment.summary().lines():
        logger.info(line)
    logger.info("successfully started localenv")


async def _down(args: argparse.Namespace, settings: Settings) -> None:
    codebase = validate_codebase(args.codebase)
    if args.genesis_patch is not None:
        try:
            GenesisPatcher().remove(args.genesis_patch, codebase)
        except DxregressError as exc:
            logger.error("failed to remove genesis patch", extra={"data": {"error": str(exc)}})
    docker_preflight(settings.sandbox.docker_binary)

    runtime = build_runtime(settings)
    try:
        report = await run_interruptible(runtime.environment.stop(), runtime.runner)
    finally:
        await runtime.aclose()
    logger.info("successfully shut down localenv", extra={"data": {"removed": report.succeeded}})


async def _amain(argv: Sequence[str] | None) -> None:
    args = _build_parser().parse_args(list(argv) if argv is not None else None)
    configure_logging(root_level_env="DX_LOG_LEVEL", root_default="INFO")
    settings = Settings.load()
    if settings.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.command == "up":
        await _up(args, settings)
    else:
        await _down(args, settings)


def main(argv: Sequence[str] | None = None) -> None:
    try:
        asyncio.run(_amain(argv))
    except KeyboardInterrupt as exc:
        raise SystemExit(1) from exc
    except Exception as exc:
        logger.error("%s", exc)
        raise SystemExit(str(exc)) from exc


__all__ = ["main", "run_interruptible"]
