"""Tests for the bounded worker pool."""

import asyncio
import random

import pytest

from vrt.capture.worker_pool import PoolProgress, WorkerPool


async def _echo(task):
    await asyncio.sleep(0)
    return task


def _fail_result(task, exc):
    return ("error", task, str(exc))


class TestWorkerPool:
    def test_rejects_zero_workers(self):
        with pytest.raises(ValueError):
            WorkerPool(0)

    @pytest.mark.asyncio
    async def test_empty_task_list(self):
        assert await WorkerPool(4).run([], _echo, _fail_result) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("task_count,workers", [
        (1, 1), (5, 1), (5, 3), (3, 8), (50, 4), (17, 17),
    ])
    async def test_every_task_handled_exactly_once(self, task_count, workers):
        seen = []

        async def _handler(task):
            seen.append(task)
            await asyncio.sleep(random.random() / 1000)
            return task

        results = await WorkerPool(workers).run(list(range(task_count)), _handler, _fail_result)
        assert sorted(seen) == list(range(task_count))
        assert sorted(results) == list(range(task_count))

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        in_flight = 0
        peak = 0

        async def _handler(task):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.005)
            in_flight -= 1
            return task

        await WorkerPool(3).run(list(range(12)), _handler, _fail_result)
        assert peak == 3

    @pytest.mark.asyncio
    async def test_errors_become_results_and_siblings_continue(self):
        async def _handler(task):
            if task == 2:
                raise RuntimeError("capture failed")
            return task

        results = await WorkerPool(2).run([1, 2, 3], _handler, _fail_result)
        assert len(results) == 3
        assert ("error", 2, "capture failed") in results
        assert {1, 3} <= set(r for r in results if isinstance(r, int))

    @pytest.mark.asyncio
    async def test_progress_counters(self):
        snapshots = []

        def _on_progress(progress: PoolProgress, task):
            snapshots.append((progress.completed, progress.passed, progress.failed, progress.remaining))

        async def _handler(task):
            return task % 2 == 0

        await WorkerPool(1).run([0, 1, 2, 3], _handler, _fail_result, on_progress=_on_progress)

        # Called once when a task starts and once when it finishes
        assert len(snapshots) == 8
        assert snapshots[0] == (0, 0, 0, 4)
        assert snapshots[-1] == (4, 2, 2, 0)

    @pytest.mark.asyncio
    async def test_custom_success_predicate(self):
        final = PoolProgress()

        def _on_progress(progress, task):
            final.__dict__.update(progress.__dict__)

        await WorkerPool(2).run(
            ["ok", "bad", "ok"], _echo, _fail_result,
            on_progress=_on_progress,
            is_success=lambda result: result == "ok",
        )
        assert final.completed == 3
        assert final.passed == 2
        assert final.failed == 1
