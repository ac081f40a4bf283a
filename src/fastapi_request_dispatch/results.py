"""Result — outcome of a handler invocation."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from fastapi_request_dispatch.views import View


@dataclass
class Result:
    """View name or View plus model values, optional status and flash attributes.

    An empty Result (no view, no model) means the handler wrote the response
    itself; it is a normal outcome, not an error.
    """

    view: str | View | None = None
    model: dict[str, Any] = field(default_factory=dict)
    status_code: int | None = None
    flash: dict[str, Any] = field(default_factory=dict)
    cleared: bool = False

    @classmethod
    def empty(cls) -> Result:
        """The "handled directly" sentinel."""
        return cls()

    @property
    def is_empty(self) -> bool:
        return self.view is None and not self.model

    @property
    def is_reference(self) -> bool:
        return isinstance(self.view, str)

    def add(self, name: str, value: Any) -> Result:
        self.model[name] = value
        return self

    def add_flash(self, name: str, value: Any) -> Result:
        self.flash[name] = value
        return self

    def clear(self) -> None:
        """Drop view and model so nothing is rendered."""
        self.view = None
        self.model.clear()
        self.cleared = True

    @property
    def was_cleared(self) -> bool:
        return self.cleared and self.is_empty


def coerce_result(value: Any) -> Result | None:
    """Normalise a handler return value into a Result.

    ``None`` means handled directly, a ``str`` is a view name and a mapping
    is a model for the default view.
    """
    if value is None or isinstance(value, Result):
        return value
    if isinstance(value, str):
        return Result(view=value)
    if isinstance(value, Mapping):
        return Result(model=dict(value))
    raise TypeError(f"Unsupported handler return value: {type(value).__name__}")
