"""Background tasks and the single-owner work queue."""
from __future__ import annotations

import asyncio
import inspect
import logging
import traceback
from typing import Any
from typing import Callable
from typing import Coroutine

logger = logging.getLogger(__name__)


async def _execute_and_log_traceback(
    coro: Callable[..., Coroutine[Any, Any, None]],
    *args: Any,
    **kwargs: Any,
) -> None:
    """Run the coroutine, logging the traceback of any exception it raises."""
    try:
        await coro(*args, **kwargs)
    except Exception:
        logger.error(traceback.format_exc())
        raise


def exit_on_error(task: asyncio.Task[Any]) -> None:
    """Done callback that exits the process if the task failed.

    Cancelled tasks and tasks that returned normally are ignored.

    Raises:
        SystemExit: If the task raised an exception.
    """
    if task.cancelled() or task.exception() is None:
        return
    logger.error(
        f'Exception in background task (name="{task.get_name()}"): '
        f'{task.exception()!r}',
    )
    raise SystemExit(1)


def spawn_guarded_background_task(
    coro: Callable[..., Coroutine[Any, Any, None]],
    *args: Any,
    **kwargs: Any,
) -> asyncio.Task[Any]:
    """Run a coroutine in a background task that cannot fail silently.

    The traceback of an exception raised in the task is logged and
    [`exit_on_error()`][rtcsignal.utils.tasks.exit_on_error] stops the
    server. Background work that nobody awaits (status logging, the work
    queue drain, negotiation watchers) would otherwise die without notice
    and leave the server hanging. Work that may fail in expected ways must
    handle those errors itself.

    Source: https://stackoverflow.com/questions/62588076

    Args:
        coro: Coroutine function to run in the task.
        args: Positional arguments for the coroutine.
        kwargs: Keyword arguments for the coroutine.

    Returns:
        Asyncio task handle.
    """
    task = asyncio.create_task(
        _execute_and_log_traceback(coro, *args, **kwargs),
    )
    task.add_done_callback(exit_on_error)
    return task


class WorkQueue:
    """Bounded queue of work executed in order by a single owner task.

    Work submitted from any connection handler (or from another thread
    with `submit_threadsafe()`) is executed one item at a time, in
    submission order, by the drain task started with
    [`start()`][rtcsignal.utils.tasks.WorkQueue.start]. State that is only
    mutated by work items therefore has a single writer.

    Items are plain callables. If an item returns an awaitable it is awaited
    before the next item runs, so long running work should be spawned as a
    separate task by the item. Exceptions raised by an item are logged and
    do not stop the queue.

    Producers wait when the queue is full rather than dropping work.

    Args:
        maxsize: Maximum number of pending work items.
    """

    def __init__(self, maxsize: int = 1024) -> None:
        if maxsize < 1:
            raise ValueError(f'maxsize must be at least 1. Got {maxsize}.')
        self._queue: asyncio.Queue[
            tuple[Callable[..., Any], tuple[Any, ...]]
        ] = asyncio.Queue(maxsize)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        """Whether the drain task is running."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the drain task on the running event loop."""
        if self._task is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._task = spawn_guarded_background_task(self._drain)
        self._task.set_name('work-queue-drain')

    async def _drain(self) -> None:
        while True:
            fn, args = await self._queue.get()
            try:
                result = fn(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.error(
                    f'Work item {getattr(fn, "__qualname__", fn)} failed:\n'
                    f'{traceback.format_exc()}',
                )
            finally:
                self._queue.task_done()

    async def submit(self, fn: Callable[..., Any], *args: Any) -> None:
        """Submit work from a coroutine running on the owner event loop.

        Args:
            fn: Callable to execute on the owner task.
            args: Positional arguments passed to `fn`.
        """
        await self._queue.put((fn, args))

    def submit_threadsafe(self, fn: Callable[..., Any], *args: Any) -> None:
        """Submit work from a thread other than the owner event loop.

        Blocks the calling thread until the item has been enqueued.

        Raises:
            RuntimeError: If the queue has not been started or this is
                called from the owner event loop.
        """
        if self._loop is None:
            raise RuntimeError(
                'The work queue has not been started. Call start() first.',
            )
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            raise RuntimeError(
                'submit_threadsafe() cannot be called from the owner event '
                'loop. Use submit() instead.',
            )
        future = asyncio.run_coroutine_threadsafe(
            self.submit(fn, *args),
            self._loop,
        )
        future.result()

    async def join(self) -> None:
        """Wait until all submitted work has been executed."""
        await self._queue.join()

    async def close(self) -> None:
        """Stop the drain task. Pending work is discarded."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self._loop = None
