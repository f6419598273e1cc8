import asyncio

import pytest

from services.task_queue import JobStatus, TaskQueue
from conftest import wait_until


def make_queue(handler, **kwargs):
    kwargs.setdefault("drain_delay", 0.01)
    kwargs.setdefault("job_timeout", 1.0)
    return TaskQueue(handler, **kwargs)


def is_terminal(queue, job_id):
    job = queue.get_status(job_id)
    return job is not None and job.is_terminal


@pytest.mark.asyncio
async def test_enqueue_returns_immediately_with_pending_job():
    async def handler(payload):
        return [f"https://cdn.example.com/{payload['tool_id']}.png"]

    queue = make_queue(handler)
    job_id = queue.enqueue({"tool_id": "t1"})

    job = queue.get_status(job_id)
    assert job.status == JobStatus.PENDING
    assert job.artifacts == []
    assert job.priority == 10

    await wait_until(lambda: is_terminal(queue, job_id))
    job = queue.get_status(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.artifacts == ["https://cdn.example.com/t1.png"]
    assert job.error is None
    assert job.updated_at >= job.created_at


@pytest.mark.asyncio
async def test_jobs_start_in_priority_order():
    started = []

    async def handler(payload):
        started.append(payload["name"])
        return []

    queue = make_queue(handler)
    ids = [
        queue.enqueue({"name": "low"}, priority=10),
        queue.enqueue({"name": "urgent"}, priority=1),
        queue.enqueue({"name": "medium"}, priority=5),
    ]

    await wait_until(lambda: all(is_terminal(queue, i) for i in ids))
    assert started == ["urgent", "medium", "low"]
    assert all(queue.get_status(i).status == JobStatus.COMPLETED for i in ids)


@pytest.mark.asyncio
async def test_equal_priority_is_fifo_even_with_identical_timestamps(clock):
    started = []

    async def handler(payload):
        started.append(payload["n"])
        return []

    queue = make_queue(handler, clock=clock)
    ids = [queue.enqueue({"n": n}, priority=3) for n in range(4)]

    await wait_until(lambda: all(is_terminal(queue, i) for i in ids))
    assert started == [0, 1, 2, 3]


@pytest.mark.asyncio
async def test_at_most_one_job_processing():
    active = 0
    max_active = 0
    processing_counts = []
    queue = None

    async def handler(payload):
        nonlocal active, max_active
        active += 1
        max_active = max(max_active, active)
        processing_counts.append(queue.get_queue_stats().processing)
        await asyncio.sleep(0.01)
        active -= 1
        return []

    queue = make_queue(handler)
    ids = [queue.enqueue({"n": n}) for n in range(5)]
    await asyncio.sleep(0)
    # Extra enqueues while a job is running must not start a second worker
    ids.append(queue.enqueue({"n": 5}))

    await wait_until(lambda: all(is_terminal(queue, i) for i in ids))
    assert max_active == 1
    assert processing_counts == [1] * 6


@pytest.mark.asyncio
async def test_handler_error_marks_job_failed_without_retry():
    calls = 0

    async def handler(payload):
        nonlocal calls
        calls += 1
        raise RuntimeError("Screenshot fetch failed: 502")

    queue = make_queue(handler)
    job_id = queue.enqueue({"tool_id": "t1"})

    await wait_until(lambda: is_terminal(queue, job_id))
    await asyncio.sleep(0.05)

    job = queue.get_status(job_id)
    assert job.status == JobStatus.FAILED
    assert job.error == "Screenshot fetch failed: 502"
    assert job.artifacts == []
    assert calls == 1


@pytest.mark.asyncio
async def test_error_without_message_uses_exception_name():
    async def handler(payload):
        raise KeyError()

    queue = make_queue(handler)
    job_id = queue.enqueue({})
    await wait_until(lambda: is_terminal(queue, job_id))
    assert queue.get_status(job_id).error == "KeyError"


@pytest.mark.asyncio
async def test_hung_handler_times_out_and_frees_the_worker():
    async def handler(payload):
        if payload["hang"]:
            await asyncio.Event().wait()
        return ["ok"]

    queue = make_queue(handler, job_timeout=0.05)
    hung = queue.enqueue({"hang": True}, priority=1)
    fine = queue.enqueue({"hang": False}, priority=2)

    await wait_until(lambda: is_terminal(queue, hung) and is_terminal(queue, fine))
    assert queue.get_status(hung).status == JobStatus.TIMEOUT
    assert "timed out" in queue.get_status(hung).error
    assert queue.get_status(fine).status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_unknown_job_is_not_found():
    queue = make_queue(lambda payload: None)
    assert queue.get_status("nonexistent-id") is None


@pytest.mark.asyncio
async def test_lookup_enforces_ttl(clock):
    async def handler(payload):
        return []

    queue = make_queue(handler, job_ttl=60, clock=clock)
    job_id = queue.enqueue({})
    await wait_until(lambda: is_terminal(queue, job_id))

    clock.advance(60)
    assert queue.get_status(job_id) is not None

    clock.advance(0.001)
    assert queue.get_status(job_id) is None
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_enqueue_sweeps_expired_jobs(clock):
    async def handler(payload):
        return []

    queue = make_queue(handler, job_ttl=60, clock=clock)
    old = queue.enqueue({"n": 1})
    await wait_until(lambda: is_terminal(queue, old))

    clock.advance(120)
    new = queue.enqueue({"n": 2})

    assert len(queue) == 1
    assert queue.get_status(new) is not None
    await wait_until(lambda: is_terminal(queue, new))


@pytest.mark.asyncio
async def test_capacity_keeps_most_recent_jobs(clock):
    gate = asyncio.Event()

    async def handler(payload):
        await gate.wait()
        return []

    queue = make_queue(handler, max_size=3, clock=clock)
    ids = []
    for n in range(4):
        ids.append(queue.enqueue({"n": n}))
        clock.advance(1)

    assert len(queue) == 3
    assert queue.get_status(ids[0]) is None
    assert all(queue.get_status(i) is not None for i in ids[1:])

    await queue.shutdown()


@pytest.mark.asyncio
async def test_evicted_running_job_finishes_quietly():
    gate = asyncio.Event()
    started = asyncio.Event()
    handled = []

    async def handler(payload):
        handled.append(payload["name"])
        started.set()
        await gate.wait()
        return [payload["name"]]

    queue = make_queue(handler, max_size=1)
    first = queue.enqueue({"name": "first"})
    await asyncio.wait_for(started.wait(), timeout=1)
    assert queue.get_status(first).status == JobStatus.PROCESSING

    second = queue.enqueue({"name": "second"})
    assert queue.get_status(first) is None

    gate.set()
    await wait_until(lambda: is_terminal(queue, second))
    assert handled == ["first", "second"]
    assert queue.get_status(second).artifacts == ["second"]
    assert queue.get_status(first) is None


@pytest.mark.asyncio
async def test_status_is_a_snapshot():
    async def handler(payload):
        return ["a.png"]

    queue = make_queue(handler)
    job_id = queue.enqueue({"tool_id": "t1"})
    await wait_until(lambda: is_terminal(queue, job_id))

    snapshot = queue.get_status(job_id)
    snapshot.artifacts.append("tampered.png")
    snapshot.payload["tool_id"] = "other"

    fresh = queue.get_status(job_id)
    assert fresh.artifacts == ["a.png"]
    assert fresh.payload == {"tool_id": "t1"}


@pytest.mark.asyncio
async def test_queue_stats():
    gate = asyncio.Event()

    async def handler(payload):
        if payload.get("fail"):
            raise ValueError("boom")
        await gate.wait()
        return []

    queue = make_queue(handler)
    failing = queue.enqueue({"fail": True}, priority=0)
    await wait_until(lambda: is_terminal(queue, failing))
    queue.enqueue({"n": 1})
    queue.enqueue({"n": 2})
    await wait_until(lambda: queue.get_queue_stats().processing == 1)

    stats = queue.get_queue_stats().to_dict()
    assert stats == {
        "total": 3,
        "pending": 1,
        "processing": 1,
        "completed": 0,
        "failed": 1,
        "timeout": 0,
    }

    gate.set()
    await wait_until(lambda: queue.get_queue_stats().completed == 2)


@pytest.mark.asyncio
async def test_shutdown_stops_rescheduling():
    calls = []

    async def handler(payload):
        calls.append(payload["n"])
        return []

    queue = make_queue(handler, drain_delay=10)
    first = queue.enqueue({"n": 1}, priority=0)
    second = queue.enqueue({"n": 2}, priority=1)

    await wait_until(lambda: is_terminal(queue, first))
    await queue.shutdown()

    assert calls == [1]
    assert queue.get_status(second).status == JobStatus.PENDING
