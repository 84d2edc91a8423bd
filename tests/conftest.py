from __future__ import annotations

from collections.abc import Generator

import pytest

from dxregress.runtime.blocking import BlockingCallRunner


@pytest.fixture
def anyio_backend() -> str:
    # Orchestration code uses asyncio.TaskGroup/timeout directly
    return "asyncio"


@pytest.fixture
def runner() -> Generator[BlockingCallRunner, None, None]:
    call_runner = BlockingCallRunner(max_workers=4)
    yield call_runner
    call_runner.drain()
