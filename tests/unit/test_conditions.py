"""Tests for the request condition algebra."""

from __future__ import annotations

from typing import Any

import pytest

from fastapi_request_dispatch.conditions import (
    ConsumesRequestCondition,
    HeadersRequestCondition,
    NameValueExpression,
    ParamsRequestCondition,
    PatternsRequestCondition,
    ProducesRequestCondition,
    RequestMappingInfo,
    RequestMethod,
    RequestMethodsCondition,
)


class TestNameValueExpression:
    @pytest.mark.parametrize(
        ("raw", "name", "value", "negated"),
        [
            ("foo", "foo", None, False),
            ("!foo", "foo", None, True),
            ("foo=bar", "foo", "bar", False),
            ("foo!=bar", "foo", "bar", True),
        ],
    )
    def test_parse(self, raw: str, name: str, value: str | None, negated: bool) -> None:
        expression = NameValueExpression.parse(raw)
        assert (expression.name, expression.value, expression.negated) == (
            name,
            value,
            negated,
        )
        assert str(expression) == raw

    def test_case_insensitive_name(self) -> None:
        assert NameValueExpression.parse("X-Token", case_sensitive=False).name == "x-token"

    def test_match(self) -> None:
        source = {"foo": "bar"}
        assert NameValueExpression.parse("foo").match(source)
        assert not NameValueExpression.parse("!foo").match(source)
        assert NameValueExpression.parse("foo=bar").match(source)
        assert not NameValueExpression.parse("foo=baz").match(source)
        assert NameValueExpression.parse("foo!=baz").match(source)
        assert NameValueExpression.parse("!missing").match(source)


class TestCombine:
    def test_union_of_expressions(self) -> None:
        a = ParamsRequestCondition("foo", "bar=1")
        b = ParamsRequestCondition("baz")
        combined = a.combine(b)
        assert {str(e) for e in combined.expressions} == {"foo", "bar=1", "baz"}

    def test_commutative(self) -> None:
        a = HeadersRequestCondition("x-a")
        b = HeadersRequestCondition("x-b", "x-a")
        assert a.combine(b) == b.combine(a)

    def test_duplicates_collapse(self) -> None:
        combined = RequestMethodsCondition("GET").combine(RequestMethodsCondition("GET"))
        assert combined.expressions == (RequestMethod.GET,)

    def test_kind_mismatch_rejected(self) -> None:
        with pytest.raises(TypeError):
            ParamsRequestCondition("a").combine(HeadersRequestCondition("a"))  # type: ignore[arg-type]

    def test_combine_leaves_operands_untouched(self) -> None:
        a = ParamsRequestCondition("a")
        a.combine(ParamsRequestCondition("b"))
        assert len(a.expressions) == 1


class TestParamsCondition:
    def test_all_expressions_must_hold(self, make_request: Any) -> None:
        condition = ParamsRequestCondition("foo", "bar=1")
        assert condition.get_matching_condition(make_request(query_string="foo=x&bar=1"))
        assert condition.get_matching_condition(make_request(query_string="foo=x")) is None

    def test_missing_required_param(self, make_request: Any) -> None:
        condition = ParamsRequestCondition("foo")
        assert condition.get_matching_condition(make_request()) is None

    def test_negated_expressions_dropped_from_result(self, make_request: Any) -> None:
        condition = ParamsRequestCondition("foo", "!bar")
        matched = condition.get_matching_condition(make_request(query_string="foo=1"))
        assert matched is not None
        assert [str(e) for e in matched.expressions] == ["foo"]

    def test_empty_matches_everything(self, make_request: Any) -> None:
        condition = ParamsRequestCondition()
        assert condition.is_empty()
        assert condition.get_matching_condition(make_request()) == condition


class TestHeadersCondition:
    def test_header_names_case_insensitive(self, make_request: Any) -> None:
        condition = HeadersRequestCondition("X-Api-Version=2")
        request = make_request(headers={"x-api-version": "2"})
        assert condition.get_matching_condition(request) is not None

    def test_accept_and_content_type_ignored(self) -> None:
        condition = HeadersRequestCondition("Accept=text/html", "Content-Type=text/plain")
        assert condition.is_empty()


class TestMethodsCondition:
    def test_keeps_only_request_method(self, make_request: Any) -> None:
        condition = RequestMethodsCondition("GET", "POST")
        matched = condition.get_matching_condition(make_request(method="POST"))
        assert matched is not None
        assert matched.expressions == (RequestMethod.POST,)

    def test_mismatch(self, make_request: Any) -> None:
        condition = RequestMethodsCondition("POST")
        assert condition.get_matching_condition(make_request(method="GET")) is None

    def test_head_falls_back_to_get(self, make_request: Any) -> None:
        condition = RequestMethodsCondition("GET")
        matched = condition.get_matching_condition(make_request(method="HEAD"))
        assert matched is not None
        assert matched.expressions == (RequestMethod.GET,)

    def test_str_uses_alternative_infix(self) -> None:
        assert str(RequestMethodsCondition("GET", "POST")) == "[GET || POST]"


class TestMediaTypeConditions:
    def test_consumes_default_octet_stream(self, make_request: Any) -> None:
        condition = ConsumesRequestCondition("application/octet-stream")
        assert condition.get_matching_condition(make_request(method="POST")) is not None

    def test_consumes_keeps_matching_subset(self, make_request: Any) -> None:
        condition = ConsumesRequestCondition("application/json", "text/plain")
        request = make_request(headers={"content-type": "application/json; charset=utf-8"})
        matched = condition.get_matching_condition(request)
        assert matched is not None
        assert [str(e) for e in matched.expressions] == ["application/json"]

    def test_consumes_negated(self, make_request: Any) -> None:
        condition = ConsumesRequestCondition("!text/plain")
        request = make_request(headers={"content-type": "text/plain"})
        assert condition.get_matching_condition(request) is None

    def test_produces_wildcard_accept(self, make_request: Any) -> None:
        condition = ProducesRequestCondition("application/json")
        assert condition.get_matching_condition(make_request()) is not None

    def test_produces_mismatch(self, make_request: Any) -> None:
        condition = ProducesRequestCondition("application/json")
        request = make_request(headers={"accept": "text/html"})
        assert condition.get_matching_condition(request) is None


class TestPatternsCondition:
    def test_matching_patterns_sorted_best_first(self, make_request: Any) -> None:
        condition = PatternsRequestCondition("/a/**", "/a/{x}", "/b")
        matched = condition.get_matching_condition(make_request(path="/a/1"))
        assert matched is not None
        assert [p.pattern for p in matched.expressions] == ["/a/{x}", "/a/**"]

    def test_no_pattern_matches(self, make_request: Any) -> None:
        condition = PatternsRequestCondition("/a")
        assert condition.get_matching_condition(make_request(path="/b")) is None


class TestCompareTo:
    def test_more_expressions_sort_first(self, make_request: Any) -> None:
        request = make_request(query_string="a=1&b=2")
        m = ParamsRequestCondition("a", "b").get_matching_condition(request)
        n = ParamsRequestCondition("a").get_matching_condition(request)
        assert m is not None and n is not None
        assert m.compare_to(n, request) < 0
        assert n.compare_to(m, request) > 0

    def test_equal_without_tie_breaker(self, make_request: Any) -> None:
        request = make_request(query_string="a=1&b=2")
        a = ParamsRequestCondition("a")
        b = ParamsRequestCondition("b")
        assert a.compare_to(b, request) == 0

    def test_tie_breaker_consulted_on_equal_counts(self, make_request: Any) -> None:
        request = make_request()
        a = ParamsRequestCondition("a")
        b = ParamsRequestCondition("b")
        assert a.compare_to(b, request, lambda x, y, r: -1) == -1


class TestRequestMappingInfo:
    def test_matching_reduces_every_condition(self, make_request: Any) -> None:
        info = RequestMappingInfo.build(
            "/accounts/{id}", methods=["GET", "POST"], params=["foo"]
        )
        request = make_request(path="/accounts/42", query_string="foo=1")
        matched = info.get_matching_condition(request)
        assert matched is not None
        assert matched.methods.expressions == (RequestMethod.GET,)

    def test_missing_param_rejects(self, make_request: Any) -> None:
        info = RequestMappingInfo.build("/accounts", params=["foo"])
        assert info.get_matching_condition(make_request(path="/accounts")) is None

    def test_params_compared_before_patterns(self, make_request: Any) -> None:
        request = make_request(path="/accounts", query_string="foo=1")
        with_param = RequestMappingInfo.build("/**", params=["foo"])
        exact = RequestMappingInfo.build("/accounts")
        a = with_param.get_matching_condition(request)
        b = exact.get_matching_condition(request)
        assert a is not None and b is not None
        assert a.compare_to(b, request) < 0

    def test_pattern_specificity_breaks_ties(self, make_request: Any) -> None:
        request = make_request(path="/accounts/42")
        a = RequestMappingInfo.build("/accounts/{id}").get_matching_condition(request)
        b = RequestMappingInfo.build("/accounts/*").get_matching_condition(request)
        assert a is not None and b is not None
        assert a.compare_to(b, request) < 0

    def test_combine(self) -> None:
        prefix = RequestMappingInfo.build(methods=["GET"], headers=["x-a"])
        info = RequestMappingInfo.build("/a", params=["p"], name="list")
        combined = prefix.combine(info)
        assert combined.methods.expressions == (RequestMethod.GET,)
        assert len(combined.headers.expressions) == 1
        assert len(combined.params.expressions) == 1
        assert combined.name == "list"

    def test_equality(self) -> None:
        a = RequestMappingInfo.build("/a", methods=["GET"])
        b = RequestMappingInfo.build("/a", methods=["get"])
        assert a == b
        assert hash(a) == hash(b)

    def test_str(self) -> None:
        info = RequestMappingInfo.build("/a", methods=["GET"])
        assert str(info) == "{[/a], methods=[GET]}"
