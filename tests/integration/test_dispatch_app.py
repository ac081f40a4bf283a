"""End-to-end scenarios through DispatchApp mounted in a FastAPI application."""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from fastapi_request_dispatch import (
    AfterCompletion,
    BeforeHandle,
    Controller,
    DeferredResult,
    Dispatcher,
    DispatchApp,
    DispatchSettings,
    HandlerMethod,
    JSONView,
    MappedInterceptor,
    MappingViewResolver,
    RequestContext,
    RequestHandledEvent,
    RequestMappingInfo,
    RequestMappingResolver,
    ResponseStatusError,
    ResponseStatusExceptionResolver,
    Result,
    SimpleMappingExceptionResolver,
    UrlHandlerResolver,
    WebAsyncTask,
)


async def _request(
    app: FastAPI,
    method: str = "GET",
    path: str = "/web/",
    **kwargs: Any,
) -> Any:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.request(method, path, **kwargs)


def _mount(dispatcher: Dispatcher) -> FastAPI:
    app = FastAPI()

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.mount("/web", DispatchApp(dispatcher))
    return app


class _AccountsEndpoint:
    def __init__(self) -> None:
        self.accounts = {"42": {"id": "42", "owner": "ada"}}

    async def show(self, ctx: RequestContext, account_id: str) -> Result:
        account = self.accounts.get(account_id)
        if account is None:
            raise ResponseStatusError("No such account", status_code=404)
        return Result(view="accounts/show", model=dict(account))

    async def create(self, ctx: RequestContext) -> Result:
        self.accounts["43"] = {"id": "43", "owner": "grace"}
        return Result(view="redirect:/accounts/43").add_flash("message", "Account created")


class TestRequestMappingThroughFastAPI:
    async def test_handler_method_with_path_variable(self) -> None:
        endpoint = _AccountsEndpoint()
        mappings = RequestMappingResolver()
        mappings.register(
            RequestMappingInfo.build("/accounts/{account_id}", methods=["GET"]),
            HandlerMethod(endpoint, "show"),
        )
        dispatcher = Dispatcher(
            resolvers=[mappings],
            view_resolvers=[MappingViewResolver({"accounts/show": JSONView()})],
        )
        app = _mount(dispatcher)

        resp = await _request(app, "GET", "/web/accounts/42")
        assert resp.status_code == 200
        assert resp.json() == {"id": "42", "owner": "ada"}

        resp = await _request(app, "GET", "/web/accounts/7")
        assert resp.status_code == 404
        assert resp.text == "No such account"

        resp = await _request(app, "DELETE", "/web/accounts/42")
        assert resp.status_code == 404

    async def test_fastapi_routes_unaffected(self) -> None:
        app = _mount(Dispatcher())
        resp = await _request(app, "GET", "/health")
        assert resp.json() == {"status": "ok"}


class TestFlashAttributesAcrossRedirect:
    async def test_post_redirect_get(self) -> None:
        endpoint = _AccountsEndpoint()
        mappings = RequestMappingResolver()
        mappings.register(
            RequestMappingInfo.build("/accounts", methods=["POST"]),
            HandlerMethod(endpoint, "create"),
        )
        mappings.register(
            RequestMappingInfo.build("/accounts/{account_id}", methods=["GET"]),
            HandlerMethod(endpoint, "show"),
        )
        dispatcher = Dispatcher(
            resolvers=[mappings],
            view_resolvers=[MappingViewResolver({"accounts/show": JSONView()})],
        )
        app = _mount(dispatcher)
        cookies = {"cookie": "session=abc"}

        resp = await _request(app, "POST", "/web/accounts", headers=cookies)
        assert resp.status_code == 302
        assert resp.headers["location"] == "/web/accounts/43"

        resp = await _request(app, "GET", "/web/accounts/43", headers=cookies)
        assert resp.json() == {"message": "Account created", "id": "43", "owner": "grace"}

        resp = await _request(app, "GET", "/web/accounts/43", headers=cookies)
        assert "message" not in resp.json()

    async def test_flash_reaches_target_with_trailing_slash(self) -> None:
        endpoint = _AccountsEndpoint()
        mappings = RequestMappingResolver()
        mappings.register(
            RequestMappingInfo.build("/accounts", methods=["POST"]),
            HandlerMethod(endpoint, "create"),
        )
        mappings.register(
            RequestMappingInfo.build("/accounts/{account_id}", methods=["GET"]),
            HandlerMethod(endpoint, "show"),
        )
        dispatcher = Dispatcher(
            resolvers=[mappings],
            view_resolvers=[MappingViewResolver({"accounts/show": JSONView()})],
        )
        app = _mount(dispatcher)
        cookies = {"cookie": "session=abc"}

        await _request(app, "POST", "/web/accounts", headers=cookies)
        resp = await _request(app, "GET", "/web/accounts/43/", headers=cookies)
        assert resp.json()["message"] == "Account created"


class TestScopedInterceptors:
    async def test_scoped_guard_short_circuits(self) -> None:
        async def guard(ctx: RequestContext, handler: Any) -> bool:
            if ctx.request.headers.get("x-role") == "admin":
                return True
            ctx.response.send_error(403, "Forbidden")
            return False

        async def admin(ctx: RequestContext) -> None:
            ctx.response.write("admin area")

        async def public(ctx: RequestContext) -> None:
            ctx.response.write("public area")

        resolver = UrlHandlerResolver(
            {"/admin/panel": admin, "/public": public},
            interceptors=[MappedInterceptor(BeforeHandle(guard), include=["/admin/**"])],
        )
        app = _mount(Dispatcher(resolvers=[resolver]))

        resp = await _request(app, "GET", "/web/admin/panel")
        assert resp.status_code == 403
        resp = await _request(app, "GET", "/web/admin/panel", headers={"x-role": "admin"})
        assert resp.text == "admin area"
        resp = await _request(app, "GET", "/web/public")
        assert resp.text == "public area"

    async def test_cleanup_observes_failure(self) -> None:
        seen: list[BaseException | None] = []

        async def record(ctx: RequestContext, handler: Any, error: BaseException | None) -> None:
            seen.append(error)

        async def broken(ctx: RequestContext) -> None:
            raise RuntimeError("database unavailable")

        resolver = UrlHandlerResolver({"/broken": broken}, interceptors=[AfterCompletion(record)])
        app = _mount(Dispatcher(resolvers=[resolver]))

        resp = await _request(app, "GET", "/web/broken")
        assert resp.status_code == 500
        assert resp.text == "Internal dispatch error"
        assert isinstance(seen[0], RuntimeError)


class TestErrorViews:
    async def test_mapped_error_view(self) -> None:
        async def broken(ctx: RequestContext) -> None:
            raise LookupError("gone")

        dispatcher = Dispatcher(
            resolvers=[UrlHandlerResolver({"/broken": broken})],
            exception_resolvers=[
                ResponseStatusExceptionResolver(order=0),
                SimpleMappingExceptionResolver(
                    {LookupError: "errors/lookup"},
                    status_codes={"errors/lookup": 410},
                    exception_attribute=None,
                    order=1,
                ),
            ],
            view_resolvers=[MappingViewResolver({"errors/lookup": JSONView()})],
        )
        resp = await _request(_mount(dispatcher), "GET", "/web/broken")
        assert resp.status_code == 410
        assert resp.json() == {}

    async def test_unmatched_path_is_404(self) -> None:
        resp = await _request(_mount(Dispatcher()), "GET", "/web/nowhere")
        assert resp.status_code == 404


class TestConcurrentHandlers:
    async def test_deferred_result_completed_elsewhere(self) -> None:
        async def handler(ctx: RequestContext) -> DeferredResult:
            deferred = DeferredResult()

            async def complete() -> None:
                await asyncio.sleep(0.01)
                deferred.set_result(Result(view="done", model={"status": "complete"}))

            ctx.attributes["completer"] = asyncio.get_running_loop().create_task(complete())
            return deferred

        dispatcher = Dispatcher(
            resolvers=[UrlHandlerResolver({"/slow": handler})],
            view_resolvers=[MappingViewResolver({"done": JSONView()})],
        )
        resp = await _request(_mount(dispatcher), "GET", "/web/slow")
        assert resp.status_code == 200
        assert resp.json() == {"status": "complete"}

    async def test_blocking_task(self) -> None:
        async def handler(ctx: RequestContext) -> WebAsyncTask:
            return WebAsyncTask(lambda: {"rows": 3})

        dispatcher = Dispatcher(
            resolvers=[UrlHandlerResolver({"/report": handler})],
            view_resolvers=[MappingViewResolver({"report": JSONView()})],
        )
        resp = await _request(_mount(dispatcher), "GET", "/web/report")
        assert resp.json() == {"rows": 3}

    async def test_timeout(self) -> None:
        async def handler(ctx: RequestContext) -> DeferredResult:
            return DeferredResult()

        dispatcher = Dispatcher(
            resolvers=[UrlHandlerResolver({"/never": handler})],
            settings=DispatchSettings(async_timeout_seconds=0.01),
        )
        resp = await _request(_mount(dispatcher), "GET", "/web/never")
        assert resp.status_code == 503


class TestControllersAndEvents:
    async def test_controller_and_events(self) -> None:
        events: list[RequestHandledEvent] = []

        class Ping(Controller):
            async def handle_request(self, ctx: RequestContext) -> None:
                ctx.response.media_type = "text/plain"
                ctx.response.write(f"pong ({ctx.locale})")

        async def listener(event: RequestHandledEvent) -> None:
            events.append(event)

        dispatcher = Dispatcher(
            resolvers=[UrlHandlerResolver({"/ping": Ping()})],
            listeners=[listener],
        )
        resp = await _request(
            _mount(dispatcher), "GET", "/web/ping", headers={"accept-language": "nl"}
        )
        assert resp.text == "pong (nl)"
        assert len(events) == 1
        assert events[0].path == "/ping"
        assert events[0].status_code == 200
