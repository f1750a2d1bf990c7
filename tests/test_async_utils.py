import asyncio

import anyio
import pytest

from feedback_assistant.core.async_utils import CancellationToken, OperationCancelled, run_async


async def _sample() -> str:
    await anyio.sleep(0)
    return "ok"


@pytest.mark.asyncio
async def test_run_async_avoids_asyncio_run_in_worker_thread(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _fail_run(*_args: object, **_kwargs: object) -> None:
        pytest.fail("asyncio.run should not be used in request threads")

    monkeypatch.setattr(asyncio, "run", _fail_run)

    def _call() -> str:
        return run_async(_sample())

    result = await anyio.to_thread.run_sync(_call)
    assert result == "ok"


def test_run_async_without_loop() -> None:
    assert run_async(_sample()) == "ok"


@pytest.mark.asyncio
async def test_token_abandons_pending_work() -> None:
    token = CancellationToken()
    gate = asyncio.Event()

    task = asyncio.create_task(token.run(gate.wait()))
    await asyncio.sleep(0)
    token.cancel("Stopped by user")

    with pytest.raises(OperationCancelled) as exc_info:
        await task
    assert exc_info.value.reason == "Stopped by user"


@pytest.mark.asyncio
async def test_token_passes_result_through() -> None:
    token = CancellationToken()
    assert await token.run(_sample()) == "ok"
    assert token.cancelled is False


@pytest.mark.asyncio
async def test_cancelled_token_refuses_new_work() -> None:
    token = CancellationToken()
    token.cancel()
    token.cancel("second reason is ignored")

    with pytest.raises(OperationCancelled):
        await token.run(_sample())
    with pytest.raises(OperationCancelled, match="Operation cancelled"):
        token.raise_if_cancelled()
