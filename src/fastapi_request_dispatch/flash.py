"""Flash state — one-shot attributes carried across a redirect."""

from __future__ import annotations

import asyncio
import posixpath
import time
import weakref
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from urllib.parse import parse_qs, unquote, urlsplit

import structlog
from starlette.requests import Request

from fastapi_request_dispatch.patterns import lookup_path

if TYPE_CHECKING:
    from fastapi_request_dispatch.context import RequestContext

logger = structlog.get_logger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class FlashState:
    """Attributes for the request that follows a redirect.

    Ordering is by specificity: a state with a target path sorts before one
    without, then more target parameters sort before fewer.
    """

    attributes: dict[str, Any] = field(default_factory=dict)
    target_path: str | None = None
    target_params: dict[str, list[str]] = field(default_factory=dict)
    expiration_time: int = field(default=-1, compare=False)

    def __getitem__(self, key: str) -> Any:
        return self.attributes[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def __contains__(self, key: object) -> bool:
        return key in self.attributes

    def __len__(self) -> int:
        return len(self.attributes)

    def is_empty(self) -> bool:
        return not self.attributes

    def add_target_param(self, name: str, value: str) -> FlashState:
        if name and value:
            self.target_params.setdefault(name, []).append(value)
        return self

    def add_target_params(self, params: Mapping[str, Iterable[str]] | None) -> FlashState:
        if params:
            for name, values in params.items():
                for value in values:
                    self.add_target_param(name, value)
        return self

    def set_target_from_url(self, url: str, root_path: str = "") -> FlashState:
        """Target the path and query of a redirect ``url``, relative to ``root_path``."""
        parts = urlsplit(url)
        path = parts.path
        if root_path and path.startswith(root_path):
            path = path[len(root_path) :] or "/"
        self.target_path = path or None
        self.add_target_params(parse_qs(parts.query))
        return self

    def start_expiration_period(self, time_to_live: int) -> None:
        self.expiration_time = _now_ms() + time_to_live * 1000

    def is_expired(self) -> bool:
        return self.expiration_time != -1 and _now_ms() > self.expiration_time

    def specificity(self) -> tuple[int, int]:
        return (1 if self.target_path is not None else 0, len(self.target_params))

    def __lt__(self, other: FlashState) -> bool:
        return self.specificity() > other.specificity()

    def to_dict(self) -> dict[str, Any]:
        return {
            "attributes": dict(self.attributes),
            "target_path": self.target_path,
            "target_params": {k: list(v) for k, v in self.target_params.items()},
            "expiration_time": self.expiration_time,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FlashState:
        return cls(
            attributes=dict(data.get("attributes") or {}),
            target_path=data.get("target_path"),
            target_params={k: list(v) for k, v in (data.get("target_params") or {}).items()},
            expiration_time=int(data.get("expiration_time", -1)),
        )


def flash_state_matches(state: FlashState, request: Request) -> bool:
    """Whether ``state`` targets ``request`` by path and query parameters."""
    if state.target_path is not None:
        path = lookup_path(request)
        if path not in (state.target_path, state.target_path + "/"):
            return False
    if state.target_params:
        query = request.query_params
        for name, expected in state.target_params.items():
            actual = query.getlist(name)
            if not actual:
                return False
            for value in expected:
                if value not in actual:
                    return False
    return True


@runtime_checkable
class FlashStore(Protocol):
    """Pluggable storage for saved flash states, keyed by session."""

    async def save(self, state: FlashState, session_key: str) -> None: ...
    async def retrieve_and_remove_best_match(
        self, session_key: str, request: Request
    ) -> FlashState | None: ...
    async def sweep_expired(self) -> int: ...


class InMemoryFlashStore:
    """Default in-memory flash store. Single-process only."""

    def __init__(self) -> None:
        self._states: dict[str, list[FlashState]] = {}
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock(self, session_key: str) -> asyncio.Lock:
        # entries vanish once no coroutine holds the lock
        lock = self._locks.get(session_key)
        if lock is None:
            lock = self._locks[session_key] = asyncio.Lock()
        return lock

    async def save(self, state: FlashState, session_key: str) -> None:
        async with self._lock(session_key):
            self._states.setdefault(session_key, []).append(state)

    async def retrieve_and_remove_best_match(
        self, session_key: str, request: Request
    ) -> FlashState | None:
        async with self._lock(session_key):
            states = self._states.get(session_key)
            if not states:
                return None

            live = [s for s in states if not s.is_expired()]
            matches = sorted(s for s in live if flash_state_matches(s, request))
            best = matches[0] if matches else None
            if best is not None:
                live = [s for s in live if s is not best]

            if live:
                self._states[session_key] = live
            else:
                self._states.pop(session_key, None)
            return best

    async def sweep_expired(self) -> int:
        removed = 0
        for session_key in list(self._states):
            async with self._lock(session_key):
                states = self._states.get(session_key, [])
                live = [s for s in states if not s.is_expired()]
                removed += len(states) - len(live)
                if live:
                    self._states[session_key] = live
                else:
                    self._states.pop(session_key, None)
        return removed

    def __len__(self) -> int:
        return sum(len(states) for states in self._states.values())


SessionKeyFunc = Callable[[Request], "str | None"]


def _cookie_session_key(cookie_name: str) -> SessionKeyFunc:
    def session_key(request: Request) -> str | None:
        session = request.cookies.get(cookie_name)
        if session:
            return f"session:{session}"
        client = request.client
        if client is not None:
            return f"ip:{client.host}"
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return f"ip:{forwarded.split(',')[0].strip()}"
        return None

    return session_key


class FlashStateManager:
    """Saves output flash state before a redirect and retrieves it on the next request."""

    def __init__(
        self,
        store: FlashStore | None = None,
        *,
        timeout_seconds: int = 180,
        session_cookie: str = "session",
        session_key_func: SessionKeyFunc | None = None,
        sweep_interval_seconds: float | None = 60,
    ) -> None:
        self._store: FlashStore = store or InMemoryFlashStore()
        self._timeout_seconds = timeout_seconds
        self._session_key = session_key_func or _cookie_session_key(session_cookie)
        self._sweep_interval = sweep_interval_seconds
        self._last_sweep = time.monotonic()

    @property
    def store(self) -> FlashStore:
        return self._store

    async def retrieve_and_remove(self, ctx: RequestContext) -> FlashState | None:
        await self.sweep_if_due()
        session_key = self._session_key(ctx.request)
        if session_key is None:
            return None
        state = await self._store.retrieve_and_remove_best_match(session_key, ctx.request)
        if state is not None:
            logger.debug("flash_state_retrieved", path=ctx.lookup_path, state=str(state))
        return state

    async def sweep_if_due(self) -> int:
        """Purge expired states from every session once per sweep interval."""
        if self._sweep_interval is None:
            return 0
        now = time.monotonic()
        if now - self._last_sweep < self._sweep_interval:
            return 0
        self._last_sweep = now
        removed = await self._store.sweep_expired()
        if removed:
            logger.debug("flash_states_swept", removed=removed)
        return removed

    async def save(self, state: FlashState, ctx: RequestContext) -> None:
        if state.is_empty():
            return
        if ctx.response.committed:
            raise RuntimeError("Cannot save flash state after the response was committed")

        session_key = self._session_key(ctx.request)
        if session_key is None:
            logger.warning("flash_state_dropped", reason="no session", path=ctx.lookup_path)
            return

        state.target_path = self._normalize_target_path(state.target_path, ctx)
        state.start_expiration_period(self._timeout_seconds)
        await self._store.save(state, session_key)
        logger.debug("flash_state_saved", target_path=state.target_path)

    @staticmethod
    def _normalize_target_path(path: str | None, ctx: RequestContext) -> str | None:
        if not path:
            return None
        path = unquote(path)
        if not path.startswith("/"):
            base = posixpath.dirname(ctx.lookup_path)
            path = posixpath.normpath(posixpath.join(base, path))
        return path
