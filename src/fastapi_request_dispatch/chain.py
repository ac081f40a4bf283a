"""ExecutionChain — resolved handler plus its ordered interceptors."""

from __future__ import annotations

import time
from collections.abc import Iterable
from enum import Enum
from typing import Any

import structlog

from fastapi_request_dispatch.context import RequestContext
from fastapi_request_dispatch.interceptors import HandlerInterceptor
from fastapi_request_dispatch.results import Result
from fastapi_request_dispatch.trace import Phase

logger = structlog.get_logger(__name__)


class DispatchPhase(Enum):
    RESOLVED = "resolved"
    PRE_RUNNING = "pre_running"
    HANDLER_RUNNING = "handler_running"
    ASYNC_STARTED = "async_started"
    POST_RUNNING = "post_running"
    RENDERING = "rendering"
    COMPLETED = "completed"
    FAILED = "failed"


_TERMINAL = frozenset({DispatchPhase.COMPLETED, DispatchPhase.FAILED})

_TRANSITIONS: dict[DispatchPhase, frozenset[DispatchPhase]] = {
    DispatchPhase.RESOLVED: frozenset({DispatchPhase.PRE_RUNNING, DispatchPhase.RENDERING}),
    DispatchPhase.PRE_RUNNING: frozenset(
        {DispatchPhase.HANDLER_RUNNING, DispatchPhase.RENDERING}
    ),
    DispatchPhase.HANDLER_RUNNING: frozenset(
        {DispatchPhase.ASYNC_STARTED, DispatchPhase.POST_RUNNING, DispatchPhase.RENDERING}
    ),
    DispatchPhase.ASYNC_STARTED: frozenset(
        {DispatchPhase.POST_RUNNING, DispatchPhase.RENDERING}
    ),
    DispatchPhase.POST_RUNNING: frozenset({DispatchPhase.RENDERING}),
    DispatchPhase.RENDERING: frozenset(),
    DispatchPhase.COMPLETED: frozenset(),
    DispatchPhase.FAILED: frozenset(),
}


class ExecutionChain:
    """Handler and interceptors for one request.

    Pre-phase runs in registration order; post-phase and cleanup run in
    reverse, cleanup only over interceptors whose ``pre_handle`` returned
    without raising, including one that vetoed the request. The same
    instance serves the resumed pass after concurrent handling.
    """

    def __init__(
        self, handler: Any, interceptors: Iterable[HandlerInterceptor] = ()
    ) -> None:
        if isinstance(handler, ExecutionChain):
            self._interceptors = [*handler._interceptors, *interceptors]
            handler = handler.handler
        else:
            self._interceptors = list(interceptors)
        self.handler = handler
        self.phase = DispatchPhase.RESOLVED
        self._interceptor_index = -1

    @property
    def interceptors(self) -> tuple[HandlerInterceptor, ...]:
        return tuple(self._interceptors)

    def add_interceptor(self, *interceptors: HandlerInterceptor) -> ExecutionChain:
        self._interceptors.extend(interceptors)
        return self

    def enter(self, phase: DispatchPhase) -> None:
        """Move to ``phase``; terminal phases are reachable from any live phase."""
        if self.phase in _TERMINAL:
            raise RuntimeError(f"Execution chain already {self.phase.value}")
        if phase not in _TERMINAL and phase not in _TRANSITIONS[self.phase]:
            raise RuntimeError(
                f"Illegal dispatch transition {self.phase.value} -> {phase.value}"
            )
        self.phase = phase

    async def apply_pre_handle(self, ctx: RequestContext) -> bool:
        self.enter(DispatchPhase.PRE_RUNNING)
        for index, interceptor in enumerate(self._interceptors):
            started = time.perf_counter()
            proceed = await interceptor.pre_handle(ctx, self.handler)
            self._interceptor_index = index
            if not proceed:
                self._record(ctx, interceptor, "pre_handle", started, "ABORTED")
                logger.debug(
                    "pre_handle_aborted",
                    interceptor=type(interceptor).__name__,
                    path=ctx.lookup_path,
                )
                await self.trigger_after_completion(ctx, None)
                return False
            self._record(ctx, interceptor, "pre_handle", started)
        self.enter(DispatchPhase.HANDLER_RUNNING)
        return True

    async def apply_post_handle(self, ctx: RequestContext, result: Result | None) -> None:
        self.enter(DispatchPhase.POST_RUNNING)
        for interceptor in reversed(self._interceptors[: self._interceptor_index + 1]):
            started = time.perf_counter()
            await interceptor.post_handle(ctx, self.handler, result)
            self._record(ctx, interceptor, "post_handle", started)

    async def apply_after_async_started(self, ctx: RequestContext) -> None:
        self.enter(DispatchPhase.ASYNC_STARTED)
        for interceptor in reversed(self._interceptors[: self._interceptor_index + 1]):
            started = time.perf_counter()
            try:
                await interceptor.after_async_started(ctx, self.handler)
            except Exception as exc:
                self._record(ctx, interceptor, "after_async_started", started, "FAILED", str(exc))
                logger.error(
                    "after_async_started_failed",
                    interceptor=type(interceptor).__name__,
                    exc_info=exc,
                )
            else:
                self._record(ctx, interceptor, "after_async_started", started)

    async def trigger_after_completion(
        self, ctx: RequestContext, error: BaseException | None
    ) -> None:
        """Run cleanup once; errors are logged per interceptor and swallowed."""
        if self.phase in _TERMINAL:
            return
        self.enter(DispatchPhase.FAILED if error is not None else DispatchPhase.COMPLETED)
        for index in range(self._interceptor_index, -1, -1):
            interceptor = self._interceptors[index]
            started = time.perf_counter()
            try:
                await interceptor.after_completion(ctx, self.handler, error)
            except Exception as exc:
                self._record(ctx, interceptor, "after_completion", started, "FAILED", str(exc))
                logger.error(
                    "after_completion_failed",
                    interceptor=type(interceptor).__name__,
                    exc_info=exc,
                )
            else:
                self._record(ctx, interceptor, "after_completion", started)

    @staticmethod
    def _record(
        ctx: RequestContext,
        interceptor: HandlerInterceptor,
        phase: Phase,
        started: float,
        outcome: Any = "OK",
        reason: str | None = None,
    ) -> None:
        if ctx.trace is not None:
            ctx.trace.record(type(interceptor).__name__, phase, started, outcome, reason)

    def __repr__(self) -> str:
        return (
            f"ExecutionChain(handler={self.handler!r}, "
            f"interceptors={len(self._interceptors)}, phase={self.phase.value})"
        )
