"""Unit tests for the superseding task runner."""

import asyncio

import pytest

from kitchenpal.services.cancellation import OperationSuperseded, SupersedingRunner


async def _slow(value, delay=0.05, done=None):
    await asyncio.sleep(delay)
    if done is not None:
        done.append(value)
    return value


class TestSupersedingRunner:
    @pytest.mark.asyncio
    async def test_without_key_just_awaits(self):
        runner = SupersedingRunner()

        assert await runner.run(None, _slow("a", 0)) == "a"

    @pytest.mark.asyncio
    async def test_newer_request_supersedes_pending_one(self):
        runner = SupersedingRunner()
        completed: list[str] = []

        first = asyncio.create_task(runner.run("player-1", _slow("first", 0.2, completed)))
        await asyncio.sleep(0.01)
        second = await runner.run("player-1", _slow("second", 0.01, completed))

        assert second == "second"
        with pytest.raises(OperationSuperseded) as exc_info:
            await first
        assert exc_info.value.key == "player-1"
        # The cancelled operation never reached its side effect
        assert completed == ["second"]

    @pytest.mark.asyncio
    async def test_different_keys_run_independently(self):
        runner = SupersedingRunner()

        results = await asyncio.gather(
            runner.run("a", _slow("a", 0.02)),
            runner.run("b", _slow("b", 0.02)),
        )

        assert results == ["a", "b"]

    @pytest.mark.asyncio
    async def test_pending_is_cleared_after_completion(self):
        runner = SupersedingRunner()

        task = asyncio.create_task(runner.run("k", _slow("v", 0.02)))
        await asyncio.sleep(0)
        assert runner.pending("k")

        await task
        assert not runner.pending("k")

    @pytest.mark.asyncio
    async def test_caller_cancellation_propagates(self):
        runner = SupersedingRunner()

        task = asyncio.create_task(runner.run("k", _slow("v", 1)))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert not runner.pending("k")
