import asyncio
from datetime import timedelta

from runtime.jobs import ScheduledJob


def test_job_fires_repeatedly_until_cancelled():
    async def scenario():
        fired = []

        async def record(fire_at):
            fired.append(fire_at)

        job = ScheduledJob("ticker", lambda after: after + timedelta(milliseconds=5), record).start()
        await asyncio.sleep(0.1)
        job.cancel()
        count = len(fired)
        await asyncio.sleep(0.05)
        return job, count, fired

    job, count_at_cancel, fired = asyncio.run(scenario())
    assert count_at_cancel >= 2
    assert len(fired) == count_at_cancel
    assert fired == sorted(fired)
    assert not job.is_active


def test_cancel_lets_inflight_firing_finish():
    async def scenario():
        started = asyncio.Event()
        finished = []

        async def slow(fire_at):
            started.set()
            await asyncio.sleep(0.05)
            finished.append(fire_at)

        job = ScheduledJob("slow", lambda after: after, slow).start()
        await started.wait()
        job.cancel()
        await job.wait_idle()
        return job, finished

    job, finished = asyncio.run(scenario())
    assert len(finished) == 1
    assert job.fire_count == 1


def test_failing_callback_does_not_stop_job():
    async def scenario():
        async def broken(fire_at):
            raise RuntimeError("boom")

        job = ScheduledJob("broken", lambda after: after + timedelta(milliseconds=5), broken).start()
        await asyncio.sleep(0.1)
        active = job.is_active
        job.cancel()
        return job, active

    job, active = asyncio.run(scenario())
    assert active
    assert job.fire_count >= 2


def test_job_without_next_fire_time_ends():
    async def scenario():
        job = ScheduledJob("never", lambda after: None, None).start()
        await asyncio.sleep(0.01)
        return job

    job = asyncio.run(scenario())
    assert not job.is_active
    assert job.fire_count == 0
