"""DispatchException hierarchy for the dispatch pipeline."""

from __future__ import annotations

from typing import Any


class DispatchException(Exception):
    """Base for all dispatch exceptions."""


class ResponseStatusError(DispatchException):
    """Handler-level error mapped to an HTTP status code and detail."""

    def __init__(self, detail: str, *, status_code: int = 400) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


class NoHandlerFound(ResponseStatusError):
    """No resolver and no default handler matched the request (404)."""

    def __init__(self, method: str, path: str) -> None:
        super().__init__(f"No handler found for {method} {path}", status_code=404)
        self.method = method
        self.path = path


class AsyncRequestTimeout(ResponseStatusError):
    """Concurrent handling did not produce a result in time (503)."""

    def __init__(self, detail: str = "Async request timed out") -> None:
        super().__init__(detail, status_code=503)


class AsyncRequestCancelled(DispatchException):
    """Concurrent handling was cancelled before producing a result."""


class ViewResolutionError(DispatchException):
    """A view name could not be resolved to a renderable view."""

    def __init__(self, view_name: str) -> None:
        super().__init__(f"Could not resolve view with name '{view_name}'")
        self.view_name = view_name


class DispatchConfigurationError(DispatchException):
    """Misconfiguration surfaced immediately, never offered to exception resolvers."""


class AmbiguousMapping(DispatchConfigurationError):
    """Two candidates of one resolver are equally specific for a request."""

    def __init__(self, path: str, first: Any, second: Any) -> None:
        super().__init__(
            f"Ambiguous handler methods mapped for '{path}': {{{first}, {second}}}"
        )
        self.path = path
        self.candidates = (first, second)


class AdapterNotFound(DispatchConfigurationError):
    """No registered adapter supports the resolved handler."""

    def __init__(self, handler: Any) -> None:
        super().__init__(
            f"No adapter for handler [{handler!r}]: "
            "does the dispatcher include an adapter that supports this handler?"
        )
        self.handler = handler


class DispatchInternalError(DispatchException):
    """Transport-level error wrapping a failure no exception resolver claimed."""

    def __init__(self, detail: str, *, cause: BaseException | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.cause = cause
