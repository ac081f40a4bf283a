"""RequestContext — per-request state threaded through every dispatch pass."""

from __future__ import annotations

import time
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.responses import Response

from fastapi_request_dispatch.asyncsupport import AsyncManager
from fastapi_request_dispatch.flash import FlashState
from fastapi_request_dispatch.patterns import lookup_path

if TYPE_CHECKING:
    from fastapi_request_dispatch.trace import DispatchTrace


class DispatchKind(Enum):
    """Marks a pass as the initial one or the resumption after concurrent handling."""

    INITIAL = "initial"
    ASYNC = "async"


class DispatchResponse:
    """Mutable response built up during dispatch and sent once by the transport."""

    def __init__(self) -> None:
        self.status_code = 200
        self.headers = MutableHeaders()
        self.media_type: str | None = None
        self.committed = False
        self._body = bytearray()

    @property
    def body(self) -> bytes:
        return bytes(self._body)

    @property
    def is_redirect(self) -> bool:
        return 300 <= self.status_code < 400 and "location" in self.headers

    def write(self, data: bytes | str) -> None:
        if self.committed:
            raise RuntimeError("Response already committed")
        self._body += data.encode("utf-8") if isinstance(data, str) else data

    def reset(self) -> None:
        if self.committed:
            raise RuntimeError("Response already committed")
        self.status_code = 200
        self.headers = MutableHeaders()
        self.media_type = None
        self._body.clear()

    def send_redirect(self, location: str, *, status_code: int = 302) -> None:
        self.reset()
        self.status_code = status_code
        self.headers["location"] = location

    def send_error(self, status_code: int, detail: str | None = None) -> None:
        self.reset()
        self.status_code = status_code
        if detail:
            self.media_type = "text/plain"
            self.write(detail)

    def to_response(self) -> Response:
        response = Response(
            content=self.body,
            status_code=self.status_code,
            media_type=self.media_type,
        )
        for key, value in self.headers.items():
            response.headers[key] = value
        return response


@dataclass
class RequestContext:
    """Per-request state container shared by the initial and the resumed pass."""

    request: Request
    response: DispatchResponse = field(default_factory=DispatchResponse)
    locale: str = "en"
    attributes: dict[str, Any] = field(default_factory=dict)
    model: dict[str, Any] = field(default_factory=dict)
    input_flash: FlashState | None = None
    output_flash: FlashState = field(default_factory=FlashState)
    dispatch_kind: DispatchKind = DispatchKind.INITIAL
    async_manager: AsyncManager = field(default_factory=AsyncManager)
    trace: DispatchTrace | None = None
    started_at: float = field(default_factory=time.perf_counter)

    @property
    def method(self) -> str:
        return self.request.method

    @property
    def lookup_path(self) -> str:
        return lookup_path(self.request)

    @property
    def path_variables(self) -> dict[str, str]:
        variables: dict[str, str] = self.attributes.get(PATH_VARIABLES_ATTRIBUTE, {})
        return variables


PATH_VARIABLES_ATTRIBUTE = "dispatch.path_variables"
BEST_MATCHING_PATTERN_ATTRIBUTE = "dispatch.best_matching_pattern"
MATCHED_MAPPING_ATTRIBUTE = "dispatch.matched_mapping"
EXCEPTION_ATTRIBUTE = "dispatch.exception"


_current_context: ContextVar[RequestContext | None] = ContextVar(
    "dispatch_context", default=None
)
_current_locale: ContextVar[str | None] = ContextVar("dispatch_locale", default=None)

ContextTokens = tuple[Token[RequestContext | None], Token[str | None]]


def bind_context(ctx: RequestContext) -> ContextTokens:
    """Bind ``ctx`` and its locale; pass the tokens to :func:`reset_context`."""
    return _current_context.set(ctx), _current_locale.set(ctx.locale)


def reset_context(tokens: ContextTokens) -> None:
    """Restore whatever was bound before the matching :func:`bind_context`."""
    context_token, locale_token = tokens
    _current_locale.reset(locale_token)
    _current_context.reset(context_token)


def current_context() -> RequestContext | None:
    return _current_context.get()


def current_locale() -> str | None:
    return _current_locale.get()
