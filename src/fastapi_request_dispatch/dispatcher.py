"""Dispatcher — end-to-end request dispatch pipeline.

One request runs in one pass, or two when the handler starts concurrent
handling: the initial pass stops right after the handler returns, and the
resumed pass re-enters the same ExecutionChain at the post-phase. Pre-phase
never runs twice; post-phase and cleanup run exactly once in total.
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass
from email.utils import formatdate, parsedate_to_datetime
from typing import Any

import structlog
from starlette.requests import Request

from fastapi_request_dispatch._types import (
    LocaleResolver,
    RequestHandledListener,
    sort_by_order,
)
from fastapi_request_dispatch.adapters import HandlerAdapter, default_adapters
from fastapi_request_dispatch.chain import DispatchPhase, ExecutionChain
from fastapi_request_dispatch.config import DispatchSettings
from fastapi_request_dispatch.context import (
    EXCEPTION_ATTRIBUTE,
    DispatchKind,
    RequestContext,
    bind_context,
    reset_context,
)
from fastapi_request_dispatch.exception_resolvers import (
    HandlerExceptionResolver,
    ResponseStatusExceptionResolver,
)
from fastapi_request_dispatch.exceptions import (
    AdapterNotFound,
    DispatchConfigurationError,
    NoHandlerFound,
    ViewResolutionError,
)
from fastapi_request_dispatch.flash import FlashStateManager
from fastapi_request_dispatch.mapping import HandlerResolver, resolve_handler
from fastapi_request_dispatch.results import Result, coerce_result
from fastapi_request_dispatch.trace import DispatchTrace
from fastapi_request_dispatch.views import (
    REDIRECT_PREFIX,
    RedirectView,
    View,
    ViewResolver,
    default_view_name,
)

logger = structlog.get_logger(__name__)

_OUTPUT_FLASH_SAVED = "dispatch.output_flash_saved"


@dataclass(frozen=True)
class RequestHandledEvent:
    """Published once per request, after its last pass."""

    path: str
    method: str
    client_address: str | None
    session_id: str | None
    processing_time_ms: float
    failure: BaseException | None
    status_code: int


def _accept_language(request: Request) -> str | None:
    header = request.headers.get("accept-language")
    if not header:
        return None
    first = header.split(",", 1)[0].split(";", 1)[0].strip()
    return first if first and first != "*" else None


class Dispatcher:
    """Composes resolvers, adapters, interceptors, exception resolvers and views."""

    def __init__(
        self,
        *,
        resolvers: Iterable[HandlerResolver] = (),
        adapters: Iterable[HandlerAdapter] | None = None,
        exception_resolvers: Iterable[HandlerExceptionResolver] | None = None,
        view_resolvers: Iterable[ViewResolver] = (),
        flash_manager: FlashStateManager | None = None,
        default_handler: Any = None,
        locale_resolver: LocaleResolver | None = None,
        listeners: Iterable[RequestHandledListener] = (),
        settings: DispatchSettings | None = None,
    ) -> None:
        self.settings = settings or DispatchSettings()
        self._resolvers = sort_by_order(resolvers)
        self._adapters = list(adapters) if adapters is not None else default_adapters()
        self._exception_resolvers = sort_by_order(
            exception_resolvers
            if exception_resolvers is not None
            else [ResponseStatusExceptionResolver()]
        )
        self._view_resolvers = sort_by_order(view_resolvers)
        self.flash_manager = flash_manager or FlashStateManager(
            timeout_seconds=self.settings.flash_timeout_seconds,
            session_cookie=self.settings.session_cookie,
            sweep_interval_seconds=self.settings.flash_sweep_interval_seconds,
        )
        self.default_handler = default_handler
        self._locale_resolver = locale_resolver or _accept_language
        self._listeners = list(listeners)

    def add_listener(self, listener: RequestHandledListener) -> Dispatcher:
        self._listeners.append(listener)
        return self

    def create_context(self, request: Request) -> RequestContext:
        ctx = RequestContext(
            request=request,
            locale=self._locale_resolver(request) or self.settings.default_locale,
        )
        ctx.async_manager.default_timeout = self.settings.async_timeout_seconds
        if self.settings.debug:
            ctx.trace = DispatchTrace()
        return ctx

    # -- passes ---------------------------------------------------------------

    async def dispatch(self, ctx: RequestContext) -> None:
        """Run the initial pass; returns early if concurrent handling started."""
        failure: BaseException | None = None
        tokens = bind_context(ctx)
        try:
            await self._do_dispatch(ctx)
        except BaseException as exc:
            failure = exc
            raise
        finally:
            reset_context(tokens)
            if failure is None and ctx.async_manager.is_concurrent_handling_started():
                logger.debug("response_left_open", path=ctx.lookup_path)
                self._finish_trace(ctx, "ASYNC", None)
                ctx.async_manager.mark_initial_pass_complete()
            else:
                await self._publish_request_handled(ctx, failure)

    async def resume(self, ctx: RequestContext, chain: ExecutionChain) -> None:
        """Resumed pass: post-phase, result processing and cleanup on ``chain``."""
        ctx.dispatch_kind = DispatchKind.ASYNC
        failure: BaseException | None = None
        tokens = bind_context(ctx)
        try:
            value = ctx.async_manager.concurrent_result
            logger.debug("concurrent_result_dispatched", path=ctx.lookup_path)
            result: Result | None = None
            error: Exception | None = None
            try:
                try:
                    if isinstance(value, BaseException):
                        raise value
                    result = coerce_result(value)
                    self._apply_default_view_name(ctx, result)
                    await chain.apply_post_handle(ctx, result)
                except Exception as exc:
                    error = exc
                await self._process_dispatch_result(ctx, chain, result, error)
            except BaseException as exc:
                await chain.trigger_after_completion(ctx, exc)
                raise
        except BaseException as exc:
            failure = exc
            raise
        finally:
            reset_context(tokens)
            await self._publish_request_handled(ctx, failure)

    async def _do_dispatch(self, ctx: RequestContext) -> None:
        await self._retrieve_flash(ctx)

        chain: ExecutionChain | None = None
        result: Result | None = None
        error: Exception | None = None
        try:
            try:
                chain = await self._get_handler(ctx)
                if chain is None:
                    await self._no_handler_found(ctx)
                    return

                adapter = self._get_adapter(chain.handler)
                if self._check_not_modified(ctx, adapter, chain.handler):
                    chain.enter(DispatchPhase.COMPLETED)
                    return

                if not await chain.apply_pre_handle(ctx):
                    return

                resumable = chain
                ctx.async_manager.set_continuation(lambda: self.resume(ctx, resumable))
                started = time.perf_counter()
                result = await adapter.handle(ctx, chain.handler)
                if ctx.trace is not None:
                    ctx.trace.record(type(adapter).__name__, "handler", started)

                if ctx.async_manager.is_concurrent_handling_started():
                    await chain.apply_after_async_started(ctx)
                    return

                self._apply_default_view_name(ctx, result)
                await chain.apply_post_handle(ctx, result)
            except Exception as exc:
                error = exc
            await self._process_dispatch_result(ctx, chain, result, error)
        except BaseException as exc:
            if chain is not None:
                await chain.trigger_after_completion(ctx, exc)
            raise

    # -- steps ----------------------------------------------------------------

    async def _retrieve_flash(self, ctx: RequestContext) -> None:
        state = await self.flash_manager.retrieve_and_remove(ctx)
        ctx.input_flash = state
        if state is not None:
            ctx.model.update(state.attributes)

    async def _get_handler(self, ctx: RequestContext) -> ExecutionChain | None:
        chain = await resolve_handler(self._resolvers, ctx)
        if chain is None and self.default_handler is not None:
            chain = ExecutionChain(self.default_handler)
        return chain

    async def _no_handler_found(self, ctx: RequestContext) -> None:
        logger.warning("no_handler_found", method=ctx.method, path=ctx.lookup_path)
        if self.settings.throw_if_no_handler_found:
            raise NoHandlerFound(ctx.method, ctx.lookup_path)
        ctx.response.send_error(404, "Not Found")

    def _get_adapter(self, handler: Any) -> HandlerAdapter:
        for adapter in self._adapters:
            if adapter.supports(handler):
                return adapter
        raise AdapterNotFound(handler)

    def _check_not_modified(
        self, ctx: RequestContext, adapter: HandlerAdapter, handler: Any
    ) -> bool:
        if ctx.method not in ("GET", "HEAD"):
            return False
        last_modified = adapter.last_modified(ctx, handler)
        if last_modified is None or last_modified < 0:
            return False

        ctx.response.headers["last-modified"] = formatdate(last_modified, usegmt=True)
        header = ctx.request.headers.get("if-modified-since")
        if not header:
            return False
        try:
            since = parsedate_to_datetime(header).timestamp()
        except (TypeError, ValueError):
            return False
        if int(last_modified) <= int(since):
            ctx.response.status_code = 304
            logger.debug("not_modified", path=ctx.lookup_path)
            return True
        return False

    @staticmethod
    def _apply_default_view_name(ctx: RequestContext, result: Result | None) -> None:
        if result is not None and not result.is_empty and result.view is None:
            result.view = default_view_name(ctx.lookup_path)

    async def _process_dispatch_result(
        self,
        ctx: RequestContext,
        chain: ExecutionChain | None,
        result: Result | None,
        error: Exception | None,
    ) -> None:
        if error is not None:
            if isinstance(error, DispatchConfigurationError):
                raise error
            handler = chain.handler if chain is not None else None
            result = await self._process_handler_exception(ctx, handler, error)

        if result is not None:
            if result.status_code is not None:
                ctx.response.status_code = result.status_code
            if result.flash:
                ctx.output_flash.attributes.update(result.flash)
            if result.was_cleared:
                logger.debug("result_cleared", path=ctx.lookup_path)
            elif not result.is_empty:
                if chain is not None:
                    chain.enter(DispatchPhase.RENDERING)
                await self._render(ctx, result)

        await self._save_output_flash(ctx)
        if chain is not None:
            await chain.trigger_after_completion(ctx, None)

    async def _process_handler_exception(
        self, ctx: RequestContext, handler: Any, error: Exception
    ) -> Result | None:
        for resolver in self._exception_resolvers:
            result = await resolver.resolve_exception(ctx, handler, error)
            if result is not None:
                break
        else:
            raise error

        logger.debug(
            "exception_resolved",
            resolver=type(resolver).__name__,
            error=type(error).__name__,
        )
        if result.is_empty:
            ctx.attributes[EXCEPTION_ATTRIBUTE] = error
            return result
        if result.view is None:
            result.view = default_view_name(ctx.lookup_path)
        return result

    async def _render(self, ctx: RequestContext, result: Result) -> None:
        view: View
        if result.is_reference:
            view_name = str(result.view)
            resolved = await self._resolve_view_name(view_name, ctx)
            if resolved is None:
                raise ViewResolutionError(view_name)
            view = resolved
        else:
            assert result.view is not None
            view = result.view

        model = {**ctx.model, **result.model}
        await view.render(model, ctx)

    async def _resolve_view_name(self, view_name: str, ctx: RequestContext) -> View | None:
        if view_name.startswith(REDIRECT_PREFIX):
            return RedirectView(view_name[len(REDIRECT_PREFIX) :])
        for resolver in self._view_resolvers:
            view = await resolver.resolve_view_name(view_name, ctx.locale)
            if view is not None:
                return view
        return None

    async def _save_output_flash(self, ctx: RequestContext) -> None:
        state = ctx.output_flash
        if (
            state.is_empty()
            or not ctx.response.is_redirect
            or ctx.attributes.get(_OUTPUT_FLASH_SAVED)
        ):
            return
        if state.target_path is None:
            state.set_target_from_url(
                ctx.response.headers["location"], ctx.request.scope.get("root_path", "")
            )
        await self.flash_manager.save(state, ctx)
        ctx.attributes[_OUTPUT_FLASH_SAVED] = True

    # -- events ---------------------------------------------------------------

    @staticmethod
    def _finish_trace(ctx: RequestContext, outcome: Any, failure: BaseException | None) -> None:
        if ctx.trace is not None:
            ctx.trace.total_duration_ms = (time.perf_counter() - ctx.started_at) * 1000
            ctx.trace.outcome = outcome
            ctx.trace.error = failure

    async def _publish_request_handled(
        self, ctx: RequestContext, failure: BaseException | None
    ) -> None:
        elapsed = (time.perf_counter() - ctx.started_at) * 1000
        self._finish_trace(ctx, "ERROR" if failure is not None else "OK", failure)
        if failure is not None:
            logger.debug("request_failed", path=ctx.lookup_path, error=repr(failure))
        else:
            logger.debug("request_completed", path=ctx.lookup_path, duration_ms=elapsed)

        if not self.settings.publish_events or not self._listeners:
            return
        client = ctx.request.client
        event = RequestHandledEvent(
            path=ctx.lookup_path,
            method=ctx.method,
            client_address=client.host if client is not None else None,
            session_id=ctx.request.cookies.get(self.settings.session_cookie),
            processing_time_ms=elapsed,
            failure=failure,
            status_code=500 if failure is not None else ctx.response.status_code,
        )
        for listener in self._listeners:
            try:
                await listener(event)
            except Exception as exc:
                logger.error(
                    "request_handled_listener_failed",
                    listener=repr(listener),
                    exc_info=exc,
                )
