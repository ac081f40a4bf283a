"""Handler adapters — uniform invocation of any handler shape."""

from __future__ import annotations

import functools
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from starlette.concurrency import run_in_threadpool

from fastapi_request_dispatch.asyncsupport import is_async_return_value
from fastapi_request_dispatch.context import RequestContext
from fastapi_request_dispatch.results import Result, coerce_result
from fastapi_request_dispatch.views import default_view_name


@runtime_checkable
class LastModified(Protocol):
    """Handler-reported last modification time, in epoch seconds; None when unknown."""

    def get_last_modified(self, ctx: RequestContext) -> float | None: ...


def _is_async_callable(obj: Any) -> bool:
    while isinstance(obj, functools.partial):
        obj = obj.func
    return inspect.iscoroutinefunction(obj) or (
        callable(obj) and inspect.iscoroutinefunction(getattr(obj, "__call__", None))
    )


async def _call(func: Any, *args: Any, **kwargs: Any) -> Any:
    if _is_async_callable(func):
        return await func(*args, **kwargs)
    value = await run_in_threadpool(func, *args, **kwargs)
    if inspect.iscoroutine(value):
        value = await value
    return value


class HandlerAdapter(ABC):
    """Knows how to invoke one shape of handler."""

    @abstractmethod
    def supports(self, handler: Any) -> bool: ...

    @abstractmethod
    async def handle(self, ctx: RequestContext, handler: Any) -> Result | None:
        """Invoke ``handler``; None means the response was written directly."""

    def last_modified(self, ctx: RequestContext, handler: Any) -> float | None:
        if isinstance(handler, LastModified):
            return handler.get_last_modified(ctx)
        return None

    @staticmethod
    def process_return_value(ctx: RequestContext, value: Any) -> Result | None:
        if is_async_return_value(value):
            ctx.async_manager.start_concurrent_handling(value)
            return None
        return coerce_result(value)


class Controller(ABC):
    """Class-based handler."""

    @abstractmethod
    async def handle_request(self, ctx: RequestContext) -> Any: ...


class UrlFilenameViewController(Controller):
    """Renders the view named after the lookup path, with the input flash as model.

    ``/accounts/list.html`` renders ``prefix + "accounts/list" + suffix``.
    """

    def __init__(self, *, prefix: str = "", suffix: str = "") -> None:
        self.prefix = prefix
        self.suffix = suffix

    def view_name_for(self, ctx: RequestContext) -> str:
        return f"{self.prefix}{default_view_name(ctx.lookup_path)}{self.suffix}"

    async def handle_request(self, ctx: RequestContext) -> Result:
        flash = ctx.input_flash
        model = dict(flash.attributes) if flash is not None else {}
        return Result(view=self.view_name_for(ctx), model=model)


class ControllerHandlerAdapter(HandlerAdapter):
    def supports(self, handler: Any) -> bool:
        return isinstance(handler, Controller)

    async def handle(self, ctx: RequestContext, handler: Any) -> Result | None:
        value = await handler.handle_request(ctx)
        return self.process_return_value(ctx, value)


@dataclass(frozen=True)
class HandlerMethod:
    """A method of a handler object, with its declaring class as metadata."""

    bean: Any
    method_name: str

    @property
    def method(self) -> Any:
        return getattr(self.bean, self.method_name)

    @property
    def declaring_class(self) -> type:
        for cls in type(self.bean).__mro__:
            if self.method_name in vars(cls):
                return cls
        return type(self.bean)

    def __str__(self) -> str:
        return f"{self.declaring_class.__qualname__}.{self.method_name}"


class HandlerMethodAdapter(HandlerAdapter):
    """Calls ``method(ctx, **path_variables)`` passing the variables it names."""

    def supports(self, handler: Any) -> bool:
        return isinstance(handler, HandlerMethod)

    async def handle(self, ctx: RequestContext, handler: Any) -> Result | None:
        method = handler.method
        value = await _call(method, ctx, **self._path_arguments(method, ctx))
        return self.process_return_value(ctx, value)

    def last_modified(self, ctx: RequestContext, handler: Any) -> float | None:
        return super().last_modified(ctx, handler.bean)

    @staticmethod
    def _path_arguments(method: Any, ctx: RequestContext) -> dict[str, str]:
        variables = ctx.path_variables
        if not variables:
            return {}
        parameters = inspect.signature(method).parameters
        if any(p.kind is inspect.Parameter.VAR_KEYWORD for p in parameters.values()):
            return dict(variables)
        return {name: value for name, value in variables.items() if name in parameters}


class FunctionHandlerAdapter(HandlerAdapter):
    """Plain callables taking the context; sync ones run in the thread pool."""

    def supports(self, handler: Any) -> bool:
        return (
            callable(handler)
            and not isinstance(handler, (type, Controller, HandlerMethod))
        )

    async def handle(self, ctx: RequestContext, handler: Any) -> Result | None:
        value = await _call(handler, ctx)
        return self.process_return_value(ctx, value)


def default_adapters() -> list[HandlerAdapter]:
    return [
        HandlerMethodAdapter(),
        ControllerHandlerAdapter(),
        FunctionHandlerAdapter(),
    ]
