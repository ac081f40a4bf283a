"""Path patterns and lookup-path extraction."""

from __future__ import annotations

import re
from typing import Any

from starlette.requests import Request

# {name}, {name:regex}, ** or *
_TOKEN = re.compile(r"\{([^{}:]+)(?::([^{}]+))?\}|\*\*|\*")


def lookup_path(request: Request) -> str:
    """Return the request path relative to the application root."""
    path: str = request.scope.get("path", "") or "/"
    root_path: str = request.scope.get("root_path", "")
    if root_path and path.startswith(root_path):
        path = path[len(root_path) :] or "/"
    return path


class PathPattern:
    """Compiled path pattern supporting ``{var}``, ``{var:regex}``, ``*`` and ``**``.

    A pattern without a trailing slash also matches the path with one.
    """

    def __init__(self, pattern: str) -> None:
        if pattern and not pattern.startswith("/"):
            pattern = "/" + pattern
        self.pattern = pattern
        self.variables: list[str] = []
        self.single_wildcards = 0
        self.double_wildcards = 0

        parts: list[str] = []
        pos = 0
        for match in _TOKEN.finditer(pattern):
            literal = pattern[pos : match.start()]
            token = match.group(0)
            if token == "**":
                self.double_wildcards += 1
                if literal.endswith("/"):
                    parts.append(re.escape(literal[:-1]))
                    parts.append("(?:/.*)?")
                else:
                    parts.append(re.escape(literal))
                    parts.append(".*")
            elif token == "*":
                self.single_wildcards += 1
                parts.append(re.escape(literal))
                parts.append("[^/]*")
            else:
                name = match.group(1).strip()
                parts.append(re.escape(literal))
                parts.append(f"(?P<{name}>{match.group(2) or '[^/]+'})")
                self.variables.append(name)
            pos = match.end()
        parts.append(re.escape(pattern[pos:]))

        body = "".join(parts)
        suffix = "" if pattern.endswith("/") else "/?"
        self._regex = re.compile(f"^{body}{suffix}$")
        self._length = len(_TOKEN.sub("#", pattern))

    def match(self, path: str) -> dict[str, str] | None:
        """Return the extracted path variables, or None if the path does not match."""
        m = self._regex.match(path)
        if m is None:
            return None
        return {name: value for name, value in m.groupdict().items() if value is not None}

    def matches(self, path: str) -> bool:
        return self._regex.match(path) is not None

    @property
    def is_catch_all(self) -> bool:
        return self.pattern == "/**"

    def specificity(self, path: str) -> tuple[Any, ...]:
        """Sort key for this pattern against ``path``; lower sorts first."""
        total = len(self.variables) + self.single_wildcards + self.double_wildcards
        return (
            self.pattern != path,
            self.is_catch_all,
            self.pattern.endswith("/**"),
            total,
            -self._length,
            self.single_wildcards,
            len(self.variables),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PathPattern):
            return NotImplemented
        return self.pattern == other.pattern

    def __hash__(self) -> int:
        return hash(self.pattern)

    def __str__(self) -> str:
        return self.pattern

    def __repr__(self) -> str:
        return f"PathPattern({self.pattern!r})"
