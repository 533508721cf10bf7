from __future__ import annotations

import asyncio
import contextlib
import logging
import threading

import pytest

from rtcsignal.utils.tasks import spawn_guarded_background_task
from rtcsignal.utils.tasks import WorkQueue


def test_background_task_exits_on_error() -> None:
    async def okay_task() -> None:
        return

    async def bad_task() -> None:
        raise RuntimeError()

    async def run(task) -> None:
        await spawn_guarded_background_task(task)

    with contextlib.redirect_stdout(
        None,
    ), contextlib.redirect_stderr(None):
        asyncio.run(run(okay_task))
        with pytest.raises(SystemExit):
            asyncio.run(run(bad_task))


@pytest.mark.asyncio()
async def test_cancelled_background_task_does_not_exit() -> None:
    task = spawn_guarded_background_task(asyncio.sleep, 10)
    await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    # Let the done callback run
    await asyncio.sleep(0)

    assert task.cancelled()


def test_background_task_error_is_logged(caplog) -> None:
    caplog.set_level(logging.ERROR)

    async def bad_task() -> None:
        raise RuntimeError('Oh no!')

    async def run(task) -> None:
        await spawn_guarded_background_task(task)

    with contextlib.redirect_stdout(
        None,
    ), contextlib.redirect_stderr(None):
        with pytest.raises(SystemExit):
            asyncio.run(run(bad_task))

    assert any(['Traceback' in record.message for record in caplog.records])
    assert any(['Oh no!' in record.message for record in caplog.records])


def test_work_queue_bad_maxsize() -> None:
    with pytest.raises(ValueError, match='maxsize'):
        WorkQueue(0)


@pytest.mark.asyncio()
async def test_work_queue_runs_in_order() -> None:
    order: list[int] = []

    async def slow(value: int) -> None:
        await asyncio.sleep(0.01)
        order.append(value)

    queue = WorkQueue()
    queue.start()
    assert queue.running

    await queue.submit(slow, 1)
    await queue.submit(order.append, 2)
    await queue.submit(slow, 3)
    await queue.join()

    assert order == [1, 2, 3]

    await queue.close()
    assert not queue.running


@pytest.mark.asyncio()
async def test_work_queue_start_idempotent() -> None:
    queue = WorkQueue()
    queue.start()
    task = queue._task
    queue.start()
    assert queue._task is task
    await queue.close()
    await queue.close()


@pytest.mark.asyncio()
async def test_work_queue_errors_are_logged(caplog) -> None:
    caplog.set_level(logging.ERROR)
    done: list[str] = []

    def bad_item() -> None:
        raise RuntimeError('Oh no!')

    queue = WorkQueue()
    queue.start()
    await queue.submit(bad_item)
    await queue.submit(done.append, 'after')
    await queue.join()

    assert done == ['after']
    assert queue.running
    assert any(['Oh no!' in record.message for record in caplog.records])
    assert any(['bad_item' in record.message for record in caplog.records])

    await queue.close()


@pytest.mark.asyncio()
async def test_work_queue_submit_threadsafe() -> None:
    owners: list[threading.Thread] = []

    def record(value: str) -> None:
        owners.append(threading.current_thread())
        assert value == 'from thread'

    queue = WorkQueue()
    queue.start()

    await asyncio.to_thread(queue.submit_threadsafe, record, 'from thread')
    await queue.join()

    assert owners == [threading.current_thread()]

    await queue.close()


@pytest.mark.asyncio()
async def test_work_queue_submit_threadsafe_from_owner_loop() -> None:
    queue = WorkQueue()
    queue.start()

    with pytest.raises(RuntimeError, match='owner event loop'):
        queue.submit_threadsafe(print)

    await queue.close()


def test_work_queue_submit_threadsafe_not_started() -> None:
    queue = WorkQueue()

    with pytest.raises(RuntimeError, match='not been started'):
        queue.submit_threadsafe(print)
