"""DispatchApp — ASGI entry point wrapping a Dispatcher.

Mount it in a FastAPI or Starlette application::

    app = FastAPI()
    app.mount("/web", DispatchApp(dispatcher))
"""

from __future__ import annotations

import asyncio

import structlog
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.types import Receive, Scope, Send

from fastapi_request_dispatch.dispatcher import Dispatcher
from fastapi_request_dispatch.exceptions import DispatchInternalError

logger = structlog.get_logger(__name__)


class DispatchApp:
    """Runs every HTTP request through a Dispatcher and sends its response once."""

    def __init__(self, dispatcher: Dispatcher) -> None:
        self.dispatcher = dispatcher

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await self._lifespan(receive, send)
            return
        if scope["type"] != "http":
            raise RuntimeError(f"Unsupported ASGI scope type: {scope['type']}")

        request = Request(scope, receive)
        response = await self.handle(request)
        await response(scope, receive, send)

    async def handle(self, request: Request) -> Response:
        """Dispatch ``request``, waiting for the resumed pass if one was started."""
        ctx = self.dispatcher.create_context(request)
        try:
            await self.dispatcher.dispatch(ctx)
            if ctx.async_manager.is_concurrent_handling_started():
                await ctx.async_manager.wait_for_completion()
        except asyncio.CancelledError:
            ctx.async_manager.cancel()
            raise
        except Exception as exc:
            wrapped = DispatchInternalError("Internal dispatch error", cause=exc)
            logger.error(
                "dispatch_failed",
                method=request.method,
                path=ctx.lookup_path,
                exc_info=exc,
            )
            return PlainTextResponse(wrapped.detail, status_code=500)

        ctx.response.committed = True
        return ctx.response.to_response()

    @staticmethod
    async def _lifespan(receive: Receive, send: Send) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                await send({"type": "lifespan.shutdown.complete"})
                return
