"""Tests for DispatchApp request handling outside an HTTP client."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from fastapi_request_dispatch.app import DispatchApp
from fastapi_request_dispatch.asyncsupport import DeferredResult
from fastapi_request_dispatch.context import RequestContext
from fastapi_request_dispatch.dispatcher import Dispatcher, RequestHandledEvent
from fastapi_request_dispatch.exceptions import AsyncRequestCancelled
from fastapi_request_dispatch.mapping import UrlHandlerResolver


class TestDispatchAppCancellation:
    async def test_disconnect_drives_exactly_one_resumption(
        self, make_request: Any, make_interceptor: Any, call_log: list[str]
    ) -> None:
        interceptor = make_interceptor("i1")
        events: list[RequestHandledEvent] = []
        captured: list[RequestContext] = []

        async def handler(ctx: RequestContext) -> DeferredResult:
            captured.append(ctx)
            return DeferredResult()

        async def listener(event: RequestHandledEvent) -> None:
            events.append(event)

        dispatcher = Dispatcher(
            resolvers=[UrlHandlerResolver({"/slow": handler}, interceptors=[interceptor])],
            listeners=[listener],
        )
        task = asyncio.create_task(DispatchApp(dispatcher).handle(make_request(path="/slow")))
        while not captured or not captured[0].async_manager.initial_pass_complete:
            await asyncio.sleep(0)
        ctx = captured[0]

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        with pytest.raises(AsyncRequestCancelled):
            await ctx.async_manager.wait_for_completion()
        ctx.async_manager.cancel()
        for _ in range(5):
            await asyncio.sleep(0)

        assert call_log == ["i1.pre", "i1.async", "i1.after"]
        assert isinstance(interceptor.errors[0], AsyncRequestCancelled)
        assert len(events) == 1
        assert events[0].status_code == 500

    async def test_cancelled_before_async_start(
        self, make_request: Any, make_interceptor: Any, call_log: list[str]
    ) -> None:
        started = asyncio.Event()

        async def handler(ctx: RequestContext) -> None:
            started.set()
            await asyncio.sleep(10)

        dispatcher = Dispatcher(
            resolvers=[
                UrlHandlerResolver({"/slow": handler}, interceptors=[make_interceptor("i1")])
            ],
        )
        task = asyncio.create_task(DispatchApp(dispatcher).handle(make_request(path="/slow")))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert call_log == ["i1.pre", "i1.after"]
