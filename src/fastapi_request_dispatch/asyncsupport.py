"""Concurrent request handling — AsyncManager, DeferredResult, WebAsyncTask.

A handler starts concurrent handling by returning a DeferredResult, a
WebAsyncTask or an asyncio future. The initial dispatch pass then returns
without running post-phase or cleanup. Once the work completes, fails, times
out or is cancelled, the AsyncManager runs its single registered
continuation exactly once, and never before the initial pass has finished.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from starlette.concurrency import run_in_threadpool

from fastapi_request_dispatch.exceptions import AsyncRequestCancelled, AsyncRequestTimeout

logger = structlog.get_logger(__name__)

_NO_RESULT: Any = object()


class DeferredResult:
    """Result set later, usually from another task or thread."""

    def __init__(self, *, timeout: float | None = None, timeout_result: Any = _NO_RESULT) -> None:
        self.timeout = timeout
        self._timeout_result = timeout_result
        self._result: Any = _NO_RESULT
        self._handler: Callable[[Any], None] | None = None
        self._lock = threading.Lock()

    def set_result(self, value: Any) -> bool:
        """Set the result from any thread; returns False if already set or expired."""
        with self._lock:
            if self._result is not _NO_RESULT:
                return False
            self._result = value
            handler = self._handler
        if handler is not None:
            handler(value)
        return True

    def set_error_result(self, error: BaseException) -> bool:
        return self.set_result(error)

    def has_result(self) -> bool:
        return self._result is not _NO_RESULT

    @property
    def result(self) -> Any:
        return None if self._result is _NO_RESULT else self._result

    def expire(self) -> bool:
        value = self._timeout_result
        if value is _NO_RESULT:
            value = AsyncRequestTimeout()
        return self.set_result(value)

    def set_result_handler(self, handler: Callable[[Any], None]) -> None:
        with self._lock:
            self._handler = handler
            value = self._result
        if value is not _NO_RESULT:
            handler(value)


class WebAsyncTask:
    """Work run off the request path: a coroutine function or a blocking callable."""

    def __init__(self, func: Callable[[], Any], *, timeout: float | None = None) -> None:
        self.func = func
        self.timeout = timeout

    async def run(self) -> Any:
        if inspect.iscoroutinefunction(self.func):
            return await self.func()
        return await run_in_threadpool(self.func)


def is_async_return_value(value: Any) -> bool:
    return isinstance(value, (DeferredResult, WebAsyncTask, asyncio.Future))


class AsyncManager:
    """Per-request coordinator between the initial and the resumed dispatch pass."""

    def __init__(self, *, default_timeout: float | None = None) -> None:
        self.default_timeout = default_timeout
        self._started = False
        self._result: Any = _NO_RESULT
        self._continuation: Callable[[], Awaitable[None]] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Future[Any] | None = None
        self._deferred: DeferredResult | None = None
        self._timeout_handle: asyncio.TimerHandle | None = None
        self._initial_pass_done = False
        self._resumed = False
        self._completed: asyncio.Event | None = None
        self._resume_task: asyncio.Task[None] | None = None
        self.dispatch_error: BaseException | None = None

    def is_concurrent_handling_started(self) -> bool:
        return self._started

    def has_concurrent_result(self) -> bool:
        return self._result is not _NO_RESULT

    @property
    def concurrent_result(self) -> Any:
        return None if self._result is _NO_RESULT else self._result

    def set_continuation(self, continuation: Callable[[], Awaitable[None]]) -> None:
        self._continuation = continuation

    def start_concurrent_handling(self, work: Any, *, timeout: float | None = None) -> None:
        """Hand ``work`` off; must be called from within the event loop."""
        if self._started:
            raise RuntimeError("Concurrent handling already started for this request")
        self._started = True
        self._loop = asyncio.get_running_loop()
        timeout = timeout if timeout is not None else self.default_timeout

        on_timeout: Callable[[], Any]
        if isinstance(work, DeferredResult):
            if work.timeout is not None:
                timeout = work.timeout
            self._deferred = work
            on_timeout = work.expire
            work.set_result_handler(self._deliver)
        else:
            if isinstance(work, WebAsyncTask):
                if work.timeout is not None:
                    timeout = work.timeout
                work = work.run()
            self._task = asyncio.ensure_future(work)
            self._task.add_done_callback(self._on_task_done)
            on_timeout = self._on_task_timeout

        if timeout is not None and not self.has_concurrent_result():
            self._timeout_handle = self._loop.call_later(timeout, on_timeout)
        logger.debug("concurrent_handling_started", timeout=timeout)

    def cancel(self) -> None:
        """Cancel outstanding work; still drives exactly one resumption."""
        self._set_concurrent_result(AsyncRequestCancelled("Concurrent handling cancelled"))
        if self._task is not None and not self._task.done():
            self._task.cancel()

    @property
    def initial_pass_complete(self) -> bool:
        return self._initial_pass_done

    def mark_initial_pass_complete(self) -> None:
        self._initial_pass_done = True
        self._maybe_resume()

    async def wait_for_completion(self) -> None:
        """Wait until the resumed pass finished; re-raise its unresolved failure."""
        await self._completion().wait()
        if self.dispatch_error is not None:
            raise self.dispatch_error

    def _completion(self) -> asyncio.Event:
        if self._completed is None:
            self._completed = asyncio.Event()
        return self._completed

    def _on_task_done(self, task: asyncio.Future[Any]) -> None:
        if task.cancelled():
            self._set_concurrent_result(AsyncRequestCancelled("Concurrent handling cancelled"))
            return
        error = task.exception()
        self._set_concurrent_result(error if error is not None else task.result())

    def _deliver(self, value: Any) -> None:
        """DeferredResult handler; hops onto the request loop when called from another thread."""
        assert self._loop is not None
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._set_concurrent_result(value)
        else:
            self._loop.call_soon_threadsafe(self._set_concurrent_result, value)

    def _on_task_timeout(self) -> None:
        self._set_concurrent_result(AsyncRequestTimeout())
        if self._task is not None:
            self._task.cancel()

    def _set_concurrent_result(self, value: Any) -> None:
        if self._result is not _NO_RESULT:
            return
        self._result = value
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None
        if self._loop is not None:
            self._loop.call_soon(self._maybe_resume)

    def _maybe_resume(self) -> None:
        if self._resumed or not self._initial_pass_done or not self.has_concurrent_result():
            return
        self._resumed = True
        if self._continuation is None:
            logger.warning("concurrent_result_without_continuation")
            self._completion().set()
            return
        assert self._loop is not None
        self._resume_task = self._loop.create_task(
            self._run_continuation(self._continuation)
        )

    async def _run_continuation(self, continuation: Callable[[], Awaitable[None]]) -> None:
        try:
            await continuation()
        except Exception as exc:
            self.dispatch_error = exc
        except asyncio.CancelledError as exc:
            self.dispatch_error = exc
            raise
        finally:
            self._completion().set()
