"""HandlerInterceptor base and convenience interceptor classes."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from fastapi_request_dispatch.context import RequestContext
from fastapi_request_dispatch.patterns import PathPattern
from fastapi_request_dispatch.results import Result


class HandlerInterceptor:
    """Base abstraction for interceptors. ``pre_handle`` proceeds and the rest are no-op by default."""

    async def pre_handle(self, ctx: RequestContext, handler: Any) -> bool:
        """Return False to stop the chain; the interceptor then owns the response."""
        return True

    async def post_handle(
        self, ctx: RequestContext, handler: Any, result: Result | None
    ) -> None:
        pass

    async def after_completion(
        self, ctx: RequestContext, handler: Any, error: BaseException | None
    ) -> None:
        pass

    async def after_async_started(self, ctx: RequestContext, handler: Any) -> None:
        pass


class MappedInterceptor(HandlerInterceptor):
    """Applies ``interceptor`` only to lookup paths included and not excluded."""

    def __init__(
        self,
        interceptor: HandlerInterceptor,
        *,
        include: Iterable[str] = (),
        exclude: Iterable[str] = (),
    ) -> None:
        self.interceptor = interceptor
        self._include = [PathPattern(p) for p in include]
        self._exclude = [PathPattern(p) for p in exclude]

    def matches(self, path: str) -> bool:
        if any(p.matches(path) for p in self._exclude):
            return False
        if not self._include:
            return True
        return any(p.matches(path) for p in self._include)

    async def pre_handle(self, ctx: RequestContext, handler: Any) -> bool:
        return await self.interceptor.pre_handle(ctx, handler)

    async def post_handle(
        self, ctx: RequestContext, handler: Any, result: Result | None
    ) -> None:
        await self.interceptor.post_handle(ctx, handler, result)

    async def after_completion(
        self, ctx: RequestContext, handler: Any, error: BaseException | None
    ) -> None:
        await self.interceptor.after_completion(ctx, handler, error)

    async def after_async_started(self, ctx: RequestContext, handler: Any) -> None:
        await self.interceptor.after_async_started(ctx, handler)


class BeforeHandle(HandlerInterceptor):
    """Convenience interceptor that only gates the pre-phase."""

    def __init__(self, callback: Callable[[RequestContext, Any], Awaitable[bool]]) -> None:
        self._callback = callback

    async def pre_handle(self, ctx: RequestContext, handler: Any) -> bool:
        return await self._callback(ctx, handler)


class AfterHandle(HandlerInterceptor):
    """Convenience interceptor that only fires in the post-phase."""

    def __init__(
        self, callback: Callable[[RequestContext, Any, Result | None], Awaitable[None]]
    ) -> None:
        self._callback = callback

    async def post_handle(
        self, ctx: RequestContext, handler: Any, result: Result | None
    ) -> None:
        await self._callback(ctx, handler, result)


class AfterCompletion(HandlerInterceptor):
    """Convenience interceptor that only fires in the cleanup phase."""

    def __init__(
        self,
        callback: Callable[[RequestContext, Any, BaseException | None], Awaitable[None]],
    ) -> None:
        self._callback = callback

    async def after_completion(
        self, ctx: RequestContext, handler: Any, error: BaseException | None
    ) -> None:
        await self._callback(ctx, handler, error)


class WebRequestInterceptor:
    """Observes requests around the handler but cannot stop them.

    Receives the model instead of the handler; adapt it into a chain with
    :class:`WebRequestInterceptorAdapter`.
    """

    async def pre_handle(self, ctx: RequestContext) -> None:
        pass

    async def post_handle(self, ctx: RequestContext, model: dict[str, Any] | None) -> None:
        pass

    async def after_completion(self, ctx: RequestContext, error: BaseException | None) -> None:
        pass

    async def after_async_started(self, ctx: RequestContext) -> None:
        pass


class WebRequestInterceptorAdapter(HandlerInterceptor):
    """Runs a WebRequestInterceptor as a HandlerInterceptor that always proceeds."""

    def __init__(self, interceptor: WebRequestInterceptor) -> None:
        self.interceptor = interceptor

    async def pre_handle(self, ctx: RequestContext, handler: Any) -> bool:
        await self.interceptor.pre_handle(ctx)
        return True

    async def post_handle(
        self, ctx: RequestContext, handler: Any, result: Result | None
    ) -> None:
        model = result.model if result is not None and not result.was_cleared else None
        await self.interceptor.post_handle(ctx, model)

    async def after_completion(
        self, ctx: RequestContext, handler: Any, error: BaseException | None
    ) -> None:
        await self.interceptor.after_completion(ctx, error)

    async def after_async_started(self, ctx: RequestContext, handler: Any) -> None:
        await self.interceptor.after_async_started(ctx)
