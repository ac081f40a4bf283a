"""Shared type aliases and protocols."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from fastapi_request_dispatch.dispatcher import RequestHandledEvent

T = TypeVar("T")

# Callback types used by the dispatcher
RequestHandledListener = Callable[["RequestHandledEvent"], Awaitable[None]]
LocaleResolver = Callable[[Any], str | None]


def sort_by_order(items: Iterable[T]) -> list[T]:
    """Stable sort by ``order`` (lower first); items without one go last."""

    def key(item: T) -> tuple[bool, int]:
        order = getattr(item, "order", None)
        return (order is None, order if order is not None else 0)

    return sorted(items, key=key)
