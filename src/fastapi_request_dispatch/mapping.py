"""Handler resolution — map a request to an ExecutionChain."""

from __future__ import annotations

import functools
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from typing import Any, TypeVar

import structlog

from fastapi_request_dispatch.chain import ExecutionChain
from fastapi_request_dispatch.conditions import RequestMappingInfo, RequestMethod
from fastapi_request_dispatch.context import (
    BEST_MATCHING_PATTERN_ATTRIBUTE,
    MATCHED_MAPPING_ATTRIBUTE,
    PATH_VARIABLES_ATTRIBUTE,
    RequestContext,
)
from fastapi_request_dispatch.exceptions import AmbiguousMapping
from fastapi_request_dispatch.interceptors import HandlerInterceptor, MappedInterceptor
from fastapi_request_dispatch.patterns import PathPattern

logger = structlog.get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class HandlerResolver(ABC):
    """Looks up a handler and wraps it with the interceptors scoped to the request path."""

    def __init__(
        self,
        *,
        order: int | None = None,
        interceptors: Iterable[HandlerInterceptor] = (),
        default_handler: Any = None,
    ) -> None:
        self.order = order
        self.default_handler = default_handler
        self._interceptors: list[HandlerInterceptor] = list(interceptors)

    def add_interceptor(self, *interceptors: HandlerInterceptor) -> HandlerResolver:
        self._interceptors.extend(interceptors)
        return self

    async def resolve(self, ctx: RequestContext) -> ExecutionChain | None:
        handler = await self.lookup_handler(ctx)
        if handler is None:
            handler = self.default_handler
        if handler is None:
            return None
        return self.build_chain(handler, ctx)

    @abstractmethod
    async def lookup_handler(self, ctx: RequestContext) -> Any | None: ...

    def build_chain(self, handler: Any, ctx: RequestContext) -> ExecutionChain:
        chain = ExecutionChain(handler)
        path = ctx.lookup_path
        for interceptor in self._interceptors:
            if isinstance(interceptor, MappedInterceptor):
                if interceptor.matches(path):
                    chain.add_interceptor(interceptor.interceptor)
            else:
                chain.add_interceptor(interceptor)
        return chain


async def resolve_handler(
    resolvers: Iterable[HandlerResolver], ctx: RequestContext
) -> ExecutionChain | None:
    """First resolver returning a chain wins; resolvers are never compared."""
    for resolver in resolvers:
        chain = await resolver.resolve(ctx)
        if chain is not None:
            logger.debug(
                "handler_resolved",
                resolver=type(resolver).__name__,
                handler=repr(chain.handler),
                path=ctx.lookup_path,
            )
            return chain
    return None


class UrlHandlerResolver(HandlerResolver):
    """Maps URL path patterns to handlers; the most specific pattern wins."""

    def __init__(
        self,
        handlers: Mapping[str, Any] | None = None,
        *,
        root_handler: Any = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.root_handler = root_handler
        self._handlers: dict[PathPattern, Any] = {}
        for pattern, handler in (handlers or {}).items():
            self.register(pattern, handler)

    def register(self, pattern: str, handler: Any) -> UrlHandlerResolver:
        path_pattern = PathPattern(pattern)
        existing = self._handlers.get(path_pattern)
        if existing is not None and existing is not handler:
            raise AmbiguousMapping(path_pattern.pattern, existing, handler)
        self._handlers[path_pattern] = handler
        return self

    async def lookup_handler(self, ctx: RequestContext) -> Any | None:
        path = ctx.lookup_path
        if path == "/" and self.root_handler is not None:
            return self.root_handler

        matches = [p for p in self._handlers if p.matches(path)]
        if not matches:
            return None
        matches.sort(key=lambda p: p.specificity(path))
        best = matches[0]
        if len(matches) > 1 and best.specificity(path) == matches[1].specificity(path):
            raise AmbiguousMapping(path, self._handlers[best], self._handlers[matches[1]])

        ctx.attributes[BEST_MATCHING_PATTERN_ATTRIBUTE] = best.pattern
        ctx.attributes[PATH_VARIABLES_ATTRIBUTE] = best.match(path) or {}
        return self._handlers[best]


class RequestMappingResolver(HandlerResolver):
    """Selects among handlers registered with a RequestMappingInfo.

    Candidates are reduced against the request and sorted by specificity;
    two equally specific best candidates raise AmbiguousMapping.
    """

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._registry: list[tuple[RequestMappingInfo, Any]] = []

    @property
    def mappings(self) -> list[tuple[RequestMappingInfo, Any]]:
        return list(self._registry)

    def register(
        self,
        info: RequestMappingInfo,
        handler: Any,
        *,
        prefix: RequestMappingInfo | None = None,
    ) -> RequestMappingResolver:
        if prefix is not None:
            info = prefix.combine(info)
        for existing, existing_handler in self._registry:
            if existing == info:
                raise AmbiguousMapping(str(info), existing_handler, handler)
        self._registry.append((info, handler))
        return self

    def mapping(
        self,
        *patterns: str,
        methods: Iterable[str | RequestMethod] = (),
        params: Iterable[str] = (),
        headers: Iterable[str] = (),
        consumes: Iterable[str] = (),
        produces: Iterable[str] = (),
        name: str | None = None,
    ) -> Callable[[F], F]:
        """Decorator form of :meth:`register`."""

        def decorator(handler: F) -> F:
            info = RequestMappingInfo.build(
                *patterns,
                methods=methods,
                params=params,
                headers=headers,
                consumes=consumes,
                produces=produces,
                name=name or getattr(handler, "__name__", None),
            )
            self.register(info, handler)
            return handler

        return decorator

    async def lookup_handler(self, ctx: RequestContext) -> Any | None:
        request = ctx.request
        matches: list[tuple[RequestMappingInfo, Any]] = []
        for info, handler in self._registry:
            matched = info.get_matching_condition(request)
            if matched is not None:
                matches.append((matched, handler))
        if not matches:
            return None

        matches.sort(
            key=functools.cmp_to_key(lambda a, b: a[0].compare_to(b[0], request))
        )
        best_info, best_handler = matches[0]
        if len(matches) > 1:
            second_info, second_handler = matches[1]
            if best_info.compare_to(second_info, request) == 0:
                raise AmbiguousMapping(ctx.lookup_path, best_handler, second_handler)

        path = ctx.lookup_path
        ctx.attributes[MATCHED_MAPPING_ATTRIBUTE] = best_info
        patterns = best_info.patterns.expressions
        if patterns:
            best_pattern = patterns[0]
            ctx.attributes[BEST_MATCHING_PATTERN_ATTRIBUTE] = best_pattern.pattern
            ctx.attributes[PATH_VARIABLES_ATTRIBUTE] = best_pattern.match(path) or {}
        return best_handler
