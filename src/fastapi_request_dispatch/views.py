"""Views and view resolvers — the render boundary."""

from __future__ import annotations

import posixpath
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode

from starlette.responses import JSONResponse

from fastapi_request_dispatch.context import RequestContext

REDIRECT_PREFIX = "redirect:"


class View(ABC):
    """Renders a model into the response."""

    @abstractmethod
    async def render(self, model: dict[str, Any], ctx: RequestContext) -> None: ...


class ViewResolver(ABC):
    """Maps a view name to a View; resolvers are consulted in order."""

    order: int | None = None

    @abstractmethod
    async def resolve_view_name(self, view_name: str, locale: str) -> View | None: ...


class MappingViewResolver(ViewResolver):
    """Resolves names from a fixed mapping, preferring ``"<name>_<locale>"`` entries."""

    def __init__(self, views: Mapping[str, View] | None = None, *, order: int | None = None) -> None:
        self._views: dict[str, View] = dict(views or {})
        self.order = order

    def register(self, name: str, view: View) -> MappingViewResolver:
        self._views[name] = view
        return self

    async def resolve_view_name(self, view_name: str, locale: str) -> View | None:
        return self._views.get(f"{view_name}_{locale}") or self._views.get(view_name)


class RedirectView(View):
    """Sends a redirect; app-relative URLs are prefixed with the mount root path."""

    def __init__(
        self,
        url: str,
        *,
        status_code: int = 302,
        context_relative: bool = True,
        expose_model_attributes: bool = False,
    ) -> None:
        self.url = url
        self.status_code = status_code
        self.context_relative = context_relative
        self.expose_model_attributes = expose_model_attributes

    async def render(self, model: dict[str, Any], ctx: RequestContext) -> None:
        target = self.url
        if self.context_relative and target.startswith("/"):
            target = ctx.request.scope.get("root_path", "") + target
        if self.expose_model_attributes:
            simple = {
                k: v for k, v in model.items() if isinstance(v, (str, int, float, bool))
            }
            if simple:
                separator = "&" if "?" in target else "?"
                target = f"{target}{separator}{urlencode(simple)}"
        flash = ctx.output_flash
        if not flash.is_empty() and flash.target_path is None:
            flash.set_target_from_url(target, ctx.request.scope.get("root_path", ""))
        ctx.response.send_redirect(target, status_code=self.status_code)

    def __repr__(self) -> str:
        return f"RedirectView({self.url!r})"


class JSONView(View):
    """Writes the model as a JSON document."""

    async def render(self, model: dict[str, Any], ctx: RequestContext) -> None:
        ctx.response.media_type = "application/json"
        ctx.response.write(JSONResponse(model).body)


def default_view_name(path: str) -> str:
    """Derive a view name from a lookup path: ``/accounts/list.html`` -> ``accounts/list``."""
    name = path.strip("/")
    stem, ext = posixpath.splitext(name)
    return stem if ext else name
