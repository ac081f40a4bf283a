"""Request conditions — composable, comparable match predicates.

Every condition holds an ordered set of discrete expressions. Conditions of
the same kind combine by union, reduce against a request to the expressions
the request satisfies, and compare by specificity: after matching, the
condition with more expressions sorts first.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, TypeVar

from starlette.requests import Request

from fastapi_request_dispatch.patterns import PathPattern, lookup_path

C = TypeVar("C", bound="RequestCondition")

TieBreaker = Callable[[Any, Any, Request], int]


class RequestMethod(str, Enum):
    GET = "GET"
    HEAD = "HEAD"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    OPTIONS = "OPTIONS"
    TRACE = "TRACE"


class RequestCondition(ABC):
    """Base for all condition kinds.

    An empty condition matches every request and is the least specific.
    """

    infix: ClassVar[str] = " && "

    def __init__(self, expressions: Iterable[Any] = ()) -> None:
        self._expressions: tuple[Any, ...] = tuple(dict.fromkeys(expressions))

    @property
    def expressions(self) -> tuple[Any, ...]:
        return self._expressions

    def is_empty(self) -> bool:
        return not self._expressions

    def _derive(self: C, expressions: Iterable[Any]) -> C:
        derived = copy.copy(self)
        derived._expressions = tuple(dict.fromkeys(expressions))
        return derived

    def combine(self: C, other: C) -> C:
        """Return the conjunction of two conditions of the same kind."""
        if type(other) is not type(self):
            raise TypeError(
                f"Cannot combine {type(self).__name__} with {type(other).__name__}"
            )
        return self._derive((*self._expressions, *other._expressions))

    @abstractmethod
    def get_matching_condition(self: C, request: Request) -> C | None:
        """Reduce to the expressions ``request`` satisfies, or None on mismatch."""

    def compare_to(
        self: C,
        other: C,
        request: Request,
        tie_breaker: TieBreaker | None = None,
    ) -> int:
        """Negative if ``self`` is more specific, positive if ``other`` is.

        Both conditions are expected to have been reduced via
        :meth:`get_matching_condition` first.
        """
        diff = len(other._expressions) - len(self._expressions)
        if diff:
            return diff
        if tie_breaker is not None:
            return tie_breaker(self, other, request)
        return 0

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return frozenset(self._expressions) == frozenset(other._expressions)  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self), frozenset(self._expressions)))

    def __str__(self) -> str:
        return "[" + self.infix.join(str(e) for e in self._expressions) + "]"

    def __repr__(self) -> str:
        return f"{type(self).__name__}{self}"


# -- name/value kinds (conjunctive) ---------------------------------------


@dataclass(frozen=True)
class NameValueExpression:
    """Parsed ``name``, ``!name``, ``name=value`` or ``name!=value`` expression."""

    name: str
    value: str | None = None
    negated: bool = False

    @classmethod
    def parse(cls, expression: str, *, case_sensitive: bool = True) -> NameValueExpression:
        separator = expression.find("=")
        if separator == -1:
            negated = expression.startswith("!")
            name = expression[1:] if negated else expression
            value = None
        else:
            negated = separator > 0 and expression[separator - 1] == "!"
            name = expression[: separator - 1] if negated else expression[:separator]
            value = expression[separator + 1 :].strip()
        name = name.strip()
        if not case_sensitive:
            name = name.lower()
        return cls(name=name, value=value, negated=negated)

    def match(self, source: Mapping[str, str]) -> bool:
        if self.value is None:
            found = self.name in source
        else:
            found = source.get(self.name) == self.value
        return found != self.negated

    def __str__(self) -> str:
        if self.value is None:
            return f"!{self.name}" if self.negated else self.name
        return f"{self.name}{'!=' if self.negated else '='}{self.value}"


class _NameValueCondition(RequestCondition):
    """All expressions must hold; only the positive ones survive matching."""

    @abstractmethod
    def _source(self, request: Request) -> Mapping[str, str]: ...

    def get_matching_condition(self, request: Request) -> Any:
        source = self._source(request)
        for expression in self._expressions:
            if not expression.match(source):
                return None
        return self._derive(e for e in self._expressions if not e.negated)


class ParamsRequestCondition(_NameValueCondition):
    """Query parameter presence/equality, e.g. ``"foo"``, ``"!bar"``, ``"x=1"``."""

    def __init__(self, *params: str) -> None:
        super().__init__(NameValueExpression.parse(p) for p in params)

    def _source(self, request: Request) -> Mapping[str, str]:
        return request.query_params


class HeadersRequestCondition(_NameValueCondition):
    """Header presence/equality; names are case-insensitive.

    ``Accept`` and ``Content-Type`` expressions are ignored here, they belong
    to :class:`ProducesRequestCondition` and :class:`ConsumesRequestCondition`.
    """

    def __init__(self, *headers: str) -> None:
        parsed = (NameValueExpression.parse(h, case_sensitive=False) for h in headers)
        super().__init__(e for e in parsed if e.name not in ("accept", "content-type"))

    def _source(self, request: Request) -> Mapping[str, str]:
        return request.headers


# -- alternative kinds (any one must hold) --------------------------------


class RequestMethodsCondition(RequestCondition):
    """HTTP methods; matching keeps only the request's own method."""

    infix = " || "

    def __init__(self, *methods: str | RequestMethod) -> None:
        super().__init__(RequestMethod(m.upper()) for m in methods)

    def get_matching_condition(self, request: Request) -> RequestMethodsCondition | None:
        if self.is_empty():
            return self
        try:
            method = RequestMethod(request.method.upper())
        except ValueError:
            return None
        if method in self._expressions:
            return self._derive((method,))
        if method is RequestMethod.HEAD and RequestMethod.GET in self._expressions:
            return self._derive((RequestMethod.GET,))
        return None

    def __str__(self) -> str:
        return "[" + self.infix.join(m.value for m in self._expressions) + "]"


@dataclass(frozen=True)
class MediaTypeExpression:
    """``type/subtype`` with optional ``!`` negation; parameters are dropped."""

    media_type: str
    negated: bool = False

    @classmethod
    def parse(cls, expression: str) -> MediaTypeExpression:
        expression = expression.strip()
        negated = expression.startswith("!")
        if negated:
            expression = expression[1:]
        return cls(media_type=_strip_params(expression), negated=negated)

    def compatible_with(self, other: str) -> bool:
        return _compatible(self.media_type, other)

    def __str__(self) -> str:
        return f"!{self.media_type}" if self.negated else self.media_type


def _strip_params(media_type: str) -> str:
    return media_type.split(";", 1)[0].strip().lower()


def _compatible(a: str, b: str) -> bool:
    a_type, _, a_sub = a.partition("/")
    b_type, _, b_sub = b.partition("/")
    if a_type == "*" or b_type == "*":
        return True
    if a_type != b_type:
        return False
    return a_sub == b_sub or a_sub == "*" or b_sub == "*"


class _MediaTypeCondition(RequestCondition):
    infix = " || "

    def __init__(self, *media_types: str) -> None:
        super().__init__(MediaTypeExpression.parse(m) for m in media_types)

    @abstractmethod
    def _request_media_types(self, request: Request) -> list[str]: ...

    def _expression_matches(self, expression: MediaTypeExpression, types: list[str]) -> bool:
        found = any(expression.compatible_with(t) for t in types)
        return found != expression.negated

    def get_matching_condition(self, request: Request) -> Any:
        if self.is_empty():
            return self
        types = self._request_media_types(request)
        matching = [e for e in self._expressions if self._expression_matches(e, types)]
        if not matching:
            return None
        return self._derive(matching)


class ConsumesRequestCondition(_MediaTypeCondition):
    """Request ``Content-Type``; absent content type reads as octet-stream."""

    def _request_media_types(self, request: Request) -> list[str]:
        content_type = request.headers.get("content-type") or "application/octet-stream"
        return [_strip_params(content_type)]


class ProducesRequestCondition(_MediaTypeCondition):
    """Request ``Accept``; absent header accepts anything."""

    def _request_media_types(self, request: Request) -> list[str]:
        accept = request.headers.get("accept") or "*/*"
        return [_strip_params(part) for part in accept.split(",") if part.strip()]


class PatternsRequestCondition(RequestCondition):
    """URL path patterns; matching keeps the patterns that match, best first."""

    infix = " || "

    def __init__(self, *patterns: str) -> None:
        super().__init__(PathPattern(p) for p in patterns)

    def get_matching_condition(self, request: Request) -> PatternsRequestCondition | None:
        if self.is_empty():
            return self
        path = lookup_path(request)
        matching = [p for p in self._expressions if p.matches(path)]
        if not matching:
            return None
        matching.sort(key=lambda p: p.specificity(path))
        return self._derive(matching)

    def compare_to(
        self,
        other: PatternsRequestCondition,
        request: Request,
        tie_breaker: TieBreaker | None = None,
    ) -> int:
        path = lookup_path(request)
        for mine, theirs in zip(self._expressions, other._expressions):
            a, b = mine.specificity(path), theirs.specificity(path)
            if a != b:
                return -1 if a < b else 1
        return super().compare_to(other, request, tie_breaker)


# -- composite --------------------------------------------------------------


class RequestMappingInfo:
    """All condition kinds for one handler candidate."""

    def __init__(
        self,
        *,
        patterns: PatternsRequestCondition | None = None,
        methods: RequestMethodsCondition | None = None,
        params: ParamsRequestCondition | None = None,
        headers: HeadersRequestCondition | None = None,
        consumes: ConsumesRequestCondition | None = None,
        produces: ProducesRequestCondition | None = None,
        name: str | None = None,
    ) -> None:
        self.patterns = patterns or PatternsRequestCondition()
        self.methods = methods or RequestMethodsCondition()
        self.params = params or ParamsRequestCondition()
        self.headers = headers or HeadersRequestCondition()
        self.consumes = consumes or ConsumesRequestCondition()
        self.produces = produces or ProducesRequestCondition()
        self.name = name

    @classmethod
    def build(
        cls,
        *patterns: str,
        methods: Iterable[str | RequestMethod] = (),
        params: Iterable[str] = (),
        headers: Iterable[str] = (),
        consumes: Iterable[str] = (),
        produces: Iterable[str] = (),
        name: str | None = None,
    ) -> RequestMappingInfo:
        return cls(
            patterns=PatternsRequestCondition(*patterns),
            methods=RequestMethodsCondition(*methods),
            params=ParamsRequestCondition(*params),
            headers=HeadersRequestCondition(*headers),
            consumes=ConsumesRequestCondition(*consumes),
            produces=ProducesRequestCondition(*produces),
            name=name,
        )

    def _conditions(self) -> tuple[RequestCondition, ...]:
        return (
            self.params,
            self.headers,
            self.consumes,
            self.produces,
            self.methods,
            self.patterns,
        )

    def combine(self, other: RequestMappingInfo) -> RequestMappingInfo:
        return RequestMappingInfo(
            patterns=self.patterns.combine(other.patterns),
            methods=self.methods.combine(other.methods),
            params=self.params.combine(other.params),
            headers=self.headers.combine(other.headers),
            consumes=self.consumes.combine(other.consumes),
            produces=self.produces.combine(other.produces),
            name=other.name or self.name,
        )

    def get_matching_condition(self, request: Request) -> RequestMappingInfo | None:
        methods = self.methods.get_matching_condition(request)
        if methods is None:
            return None
        params = self.params.get_matching_condition(request)
        if params is None:
            return None
        headers = self.headers.get_matching_condition(request)
        if headers is None:
            return None
        consumes = self.consumes.get_matching_condition(request)
        if consumes is None:
            return None
        produces = self.produces.get_matching_condition(request)
        if produces is None:
            return None
        patterns = self.patterns.get_matching_condition(request)
        if patterns is None:
            return None
        return RequestMappingInfo(
            patterns=patterns,
            methods=methods,
            params=params,
            headers=headers,
            consumes=consumes,
            produces=produces,
            name=self.name,
        )

    def compare_to(self, other: RequestMappingInfo, request: Request) -> int:
        for mine, theirs in zip(self._conditions(), other._conditions()):
            result = mine.compare_to(theirs, request)
            if result:
                return result
        return 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RequestMappingInfo):
            return NotImplemented
        return self._conditions() == other._conditions()

    def __hash__(self) -> int:
        return hash(self._conditions())

    def __str__(self) -> str:
        parts = [f"{self.patterns}"]
        for label, condition in (
            ("methods", self.methods),
            ("params", self.params),
            ("headers", self.headers),
            ("consumes", self.consumes),
            ("produces", self.produces),
        ):
            if not condition.is_empty():
                parts.append(f"{label}={condition}")
        return "{" + ", ".join(parts) + "}"
