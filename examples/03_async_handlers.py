"""
Concurrent request handling.

Demonstrates:
- DeferredResult completed by a background task
- WebAsyncTask running blocking work off the event loop
- Timeouts and error views for failed concurrent work
"""

import asyncio
import time

from fastapi import FastAPI

from fastapi_request_dispatch import (
    DeferredResult,
    DispatchApp,
    Dispatcher,
    DispatchSettings,
    JSONView,
    MappingViewResolver,
    RequestContext,
    Result,
    SimpleMappingExceptionResolver,
    UrlHandlerResolver,
    WebAsyncTask,
    configure_logging,
)

settings = DispatchSettings(async_timeout_seconds=5, debug=True)
configure_logging(settings)

_background: set[asyncio.Task] = set()


async def quote(ctx: RequestContext) -> DeferredResult:
    """Answer once a (simulated) upstream service replies."""
    deferred = DeferredResult(timeout=2, timeout_result=Result(view="quote", model={"quote": None}))

    async def fetch() -> None:
        await asyncio.sleep(0.5)
        deferred.set_result(Result(view="quote", model={"quote": 42.0}))

    task = asyncio.get_running_loop().create_task(fetch())
    _background.add(task)
    task.add_done_callback(_background.discard)
    return deferred


async def report(ctx: RequestContext) -> WebAsyncTask:
    """Blocking report generation."""

    def build() -> dict:
        time.sleep(1)
        return {"rows": 1000}

    return WebAsyncTask(build, timeout=3)


async def flaky(ctx: RequestContext) -> WebAsyncTask:
    async def work() -> dict:
        raise ConnectionError("upstream unavailable")

    return WebAsyncTask(work)


dispatcher = Dispatcher(
    resolvers=[UrlHandlerResolver({"/quote": quote, "/report": report, "/flaky": flaky})],
    exception_resolvers=[
        SimpleMappingExceptionResolver(
            {ConnectionError: "error"},
            status_codes={"error": 502},
            exception_attribute=None,
        )
    ],
    view_resolvers=[
        MappingViewResolver(
            {"quote": JSONView(), "report": JSONView(), "error": JSONView()}
        )
    ],
    settings=settings,
)

app = FastAPI(title="Async Dispatch Example")
app.mount("/api", DispatchApp(dispatcher))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)

    # Test with:
    # curl http://localhost:8000/api/quote
    # curl http://localhost:8000/api/report
    # curl -i http://localhost:8000/api/flaky
