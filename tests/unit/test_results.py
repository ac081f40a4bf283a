"""Tests for Result and return value coercion."""

from __future__ import annotations

import pytest

from fastapi_request_dispatch.results import Result, coerce_result
from fastapi_request_dispatch.views import JSONView


class TestResult:
    def test_empty_sentinel(self) -> None:
        result = Result.empty()
        assert result.is_empty
        assert not result.was_cleared

    def test_model_only_is_not_empty(self) -> None:
        assert not Result(model={"a": 1}).is_empty

    def test_reference(self) -> None:
        assert Result(view="home").is_reference
        assert not Result(view=JSONView()).is_reference

    def test_clear(self) -> None:
        result = Result(view="home").add("a", 1)
        result.clear()
        assert result.is_empty
        assert result.was_cleared

    def test_flash(self) -> None:
        result = Result(view="redirect:/a").add_flash("message", "saved")
        assert result.flash == {"message": "saved"}


class TestCoerceResult:
    def test_none_and_result_pass_through(self) -> None:
        result = Result(view="x")
        assert coerce_result(None) is None
        assert coerce_result(result) is result

    def test_string_is_view_name(self) -> None:
        assert coerce_result("home") == Result(view="home")

    def test_mapping_is_model(self) -> None:
        assert coerce_result({"a": 1}) == Result(model={"a": 1})

    def test_unsupported(self) -> None:
        with pytest.raises(TypeError):
            coerce_result(3.14)
