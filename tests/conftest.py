"""Shared pytest fixtures for fastapi-request-dispatch tests."""

from __future__ import annotations

from typing import Any

import pytest
from starlette.requests import Request

from fastapi_request_dispatch.context import RequestContext
from fastapi_request_dispatch.interceptors import HandlerInterceptor
from fastapi_request_dispatch.results import Result


@pytest.fixture
def make_request() -> Any:
    """Factory for creating Starlette Request objects from a bare scope."""

    def _make(
        method: str = "GET",
        path: str = "/",
        headers: dict[str, str] | None = None,
        query_string: str = "",
        cookies: dict[str, str] | None = None,
        client: tuple[str, int] | None = ("testclient", 50000),
        root_path: str = "",
    ) -> Request:
        raw_headers = [
            (k.lower().encode(), v.encode()) for k, v in (headers or {}).items()
        ]
        if cookies:
            cookie = "; ".join(f"{k}={v}" for k, v in cookies.items())
            raw_headers.append((b"cookie", cookie.encode()))
        scope: dict[str, Any] = {
            "type": "http",
            "method": method,
            "path": root_path + path,
            "query_string": query_string.encode(),
            "headers": raw_headers,
            "root_path": root_path,
            "client": client,
        }
        return Request(scope)

    return _make


@pytest.fixture
def make_ctx(make_request: Any) -> Any:
    """Factory for RequestContext objects; keyword arguments go to make_request."""

    def _make(**kwargs: Any) -> RequestContext:
        return RequestContext(request=make_request(**kwargs))

    return _make


class RecordingInterceptor(HandlerInterceptor):
    """Appends ``"<name>.<callback>"`` to a shared log for every callback."""

    def __init__(self, name: str, log: list[str], *, proceed: bool = True) -> None:
        self.name = name
        self.log = log
        self.proceed = proceed
        self.errors: list[BaseException | None] = []

    async def pre_handle(self, ctx: RequestContext, handler: Any) -> bool:
        self.log.append(f"{self.name}.pre")
        return self.proceed

    async def post_handle(
        self, ctx: RequestContext, handler: Any, result: Result | None
    ) -> None:
        self.log.append(f"{self.name}.post")

    async def after_completion(
        self, ctx: RequestContext, handler: Any, error: BaseException | None
    ) -> None:
        self.errors.append(error)
        self.log.append(f"{self.name}.after")

    async def after_async_started(self, ctx: RequestContext, handler: Any) -> None:
        self.log.append(f"{self.name}.async")


@pytest.fixture
def call_log() -> list[str]:
    return []


@pytest.fixture
def make_interceptor(call_log: list[str]) -> Any:
    """Factory for RecordingInterceptor instances sharing ``call_log``."""

    def _make(name: str, *, proceed: bool = True) -> RecordingInterceptor:
        return RecordingInterceptor(name, call_log, proceed=proceed)

    return _make
