"""Background task runner tests."""

import asyncio

from attestation_platform.application.background import BackgroundTaskRunner


class TestBackgroundTaskRunner:

    async def test_runs_detached_and_drains(self, metrics):
        runner = BackgroundTaskRunner(metrics)
        done = []

        async def work():
            await asyncio.sleep(0)
            done.append(1)

        runner.submit("work", work)
        assert runner.pending_count == 1

        await runner.drain()
        assert done == [1]
        assert runner.pending_count == 0

    async def test_failure_is_logged_not_raised(self):
        """An exception inside a task never reaches the submitter."""
        runner = BackgroundTaskRunner()

        async def broken():
            raise RuntimeError("boom")

        task = runner.submit("broken", broken)
        await runner.drain()

        assert task.result() is None
        assert runner.stats() == {"started": 1, "failed": 1, "pending": 0}

    async def test_drain_waits_for_tasks_scheduled_meanwhile(self):
        runner = BackgroundTaskRunner()
        order = []

        async def child():
            order.append("child")

        async def parent():
            order.append("parent")
            runner.submit("child", child)

        runner.submit("parent", parent)
        await runner.drain()

        assert order == ["parent", "child"]

    async def test_drain_timeout(self):
        runner = BackgroundTaskRunner()
        runner.submit("slow", lambda: asyncio.sleep(5))

        await runner.drain(timeout=0.01)
        assert runner.pending_count == 1

        await runner.cancel_all()
        assert runner.pending_count == 0

    async def test_gauge(self, metrics, collector_registry):
        runner = BackgroundTaskRunner(metrics)
        runner.submit("quick", lambda: asyncio.sleep(0))
        assert collector_registry.get_sample_value("attestation_background_tasks") == 1

        await runner.drain()
        assert collector_registry.get_sample_value("attestation_background_tasks") == 0
