"""Tests for PathPattern and lookup_path."""

from __future__ import annotations

from typing import Any

from fastapi_request_dispatch.patterns import PathPattern, lookup_path


class TestLookupPath:
    def test_plain_path(self, make_request: Any) -> None:
        assert lookup_path(make_request(path="/accounts")) == "/accounts"

    def test_strips_root_path(self, make_request: Any) -> None:
        request = make_request(path="/accounts", root_path="/web")
        assert lookup_path(request) == "/accounts"

    def test_root_path_only_is_slash(self, make_request: Any) -> None:
        request = make_request(path="", root_path="/web")
        assert lookup_path(request) == "/"


class TestPathPatternMatching:
    def test_literal(self) -> None:
        pattern = PathPattern("/accounts")
        assert pattern.matches("/accounts")
        assert pattern.matches("/accounts/")
        assert not pattern.matches("/accounts/42")

    def test_missing_leading_slash_is_added(self) -> None:
        assert PathPattern("accounts").pattern == "/accounts"

    def test_variable_extraction(self) -> None:
        pattern = PathPattern("/accounts/{account_id}/orders/{order_id}")
        assert pattern.match("/accounts/42/orders/7") == {
            "account_id": "42",
            "order_id": "7",
        }

    def test_variable_with_regex(self) -> None:
        pattern = PathPattern(r"/accounts/{id:\d+}")
        assert pattern.match("/accounts/42") == {"id": "42"}
        assert pattern.match("/accounts/abc") is None

    def test_single_wildcard_stays_in_segment(self) -> None:
        pattern = PathPattern("/files/*.txt")
        assert pattern.matches("/files/notes.txt")
        assert not pattern.matches("/files/a/notes.txt")

    def test_double_wildcard_spans_segments(self) -> None:
        pattern = PathPattern("/static/**")
        assert pattern.matches("/static")
        assert pattern.matches("/static/css/site.css")
        assert not pattern.matches("/other")

    def test_catch_all(self) -> None:
        pattern = PathPattern("/**")
        assert pattern.is_catch_all
        assert pattern.matches("/")
        assert pattern.matches("/anything/at/all")


class TestPathPatternSpecificity:
    def _ordered(self, path: str, *patterns: str) -> list[str]:
        compiled = [PathPattern(p) for p in patterns]
        return [p.pattern for p in sorted(compiled, key=lambda p: p.specificity(path))]

    def test_exact_match_wins(self) -> None:
        assert self._ordered("/a/b", "/a/{x}", "/a/b")[0] == "/a/b"

    def test_catch_all_is_last(self) -> None:
        assert self._ordered("/a/b", "/**", "/a/**")[-1] == "/**"

    def test_fewer_wildcards_first(self) -> None:
        assert self._ordered("/a/b/c", "/a/{x}/{y}", "/a/b/{y}")[0] == "/a/b/{y}"

    def test_variable_beats_wildcard(self) -> None:
        assert self._ordered("/a/b", "/a/*", "/a/{x}")[0] == "/a/{x}"

    def test_equality_and_hash_on_pattern(self) -> None:
        assert PathPattern("/a/{x}") == PathPattern("/a/{x}")
        assert len({PathPattern("/a"), PathPattern("a")}) == 1
