"""Exception resolvers — turn handler failures into renderable results."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

from fastapi_request_dispatch.context import RequestContext
from fastapi_request_dispatch.results import Result


class HandlerExceptionResolver(ABC):
    """Claims an error by returning a Result; None passes it on."""

    order: int | None = None

    @abstractmethod
    async def resolve_exception(
        self, ctx: RequestContext, handler: Any, error: Exception
    ) -> Result | None: ...


class ResponseStatusExceptionResolver(HandlerExceptionResolver):
    """Writes errors carrying an integer ``status_code`` as an error response.

    Covers ResponseStatusError subclasses and starlette's HTTPException.
    """

    def __init__(self, *, order: int | None = None) -> None:
        self.order = order

    async def resolve_exception(
        self, ctx: RequestContext, handler: Any, error: Exception
    ) -> Result | None:
        status_code = getattr(error, "status_code", None)
        if not isinstance(status_code, int):
            return None
        detail = getattr(error, "detail", None) or str(error)
        ctx.response.send_error(status_code, str(detail))
        headers = getattr(error, "headers", None)
        if headers:
            for key, value in headers.items():
                ctx.response.headers[key] = value
        return Result.empty()


class SimpleMappingExceptionResolver(HandlerExceptionResolver):
    """Maps exception types to error view names.

    The closest class in the error's MRO wins. The error is exposed to the
    view under ``exception_attribute``.
    """

    def __init__(
        self,
        mappings: Mapping[type[BaseException], str] | None = None,
        *,
        status_codes: Mapping[str, int] | None = None,
        default_view: str | None = None,
        default_status_code: int | None = None,
        excluded: Iterable[type[BaseException]] = (),
        handlers: Iterable[Any] | None = None,
        exception_attribute: str | None = "exception",
        order: int | None = None,
    ) -> None:
        self._mappings = dict(mappings or {})
        self._status_codes = dict(status_codes or {})
        self._default_view = default_view
        self._default_status_code = default_status_code
        self._excluded = tuple(excluded)
        self._handlers = list(handlers) if handlers is not None else None
        self._exception_attribute = exception_attribute
        self.order = order

    def _applies_to(self, handler: Any) -> bool:
        if self._handlers is None:
            return True
        return any(handler is h or handler == h for h in self._handlers)

    def _view_name(self, error: Exception) -> str | None:
        if self._excluded and isinstance(error, self._excluded):
            return None
        for cls in type(error).__mro__:
            if cls in self._mappings:
                return self._mappings[cls]
        return self._default_view

    async def resolve_exception(
        self, ctx: RequestContext, handler: Any, error: Exception
    ) -> Result | None:
        if not self._applies_to(handler):
            return None
        view_name = self._view_name(error)
        if view_name is None:
            return None
        status_code = self._status_codes.get(view_name, self._default_status_code)
        result = Result(view=view_name, status_code=status_code)
        if self._exception_attribute:
            result.add(self._exception_attribute, error)
        return result
