"""
Post/redirect/get with flash attributes.

Demonstrates:
- Returning a ``redirect:`` view with flash attributes
- Flash attributes appearing in the model of the redirected request
- An interceptor scoped to part of the URL space
"""

from typing import Any

from fastapi import FastAPI

from fastapi_request_dispatch import (
    AfterCompletion,
    BeforeHandle,
    DispatchApp,
    Dispatcher,
    JSONView,
    MappedInterceptor,
    MappingViewResolver,
    RequestContext,
    Result,
    UrlHandlerResolver,
)

MESSAGES: list[str] = []


async def inbox(ctx: RequestContext) -> Result:
    if ctx.method == "POST":
        body = await ctx.request.body()
        MESSAGES.append(body.decode() or "(empty)")
        return Result(view="redirect:/inbox").add_flash("notice", "Message stored")
    return Result(view="inbox", model={"messages": MESSAGES})


async def require_session(ctx: RequestContext, handler: Any) -> bool:
    """Reject requests without a session cookie."""
    if ctx.request.cookies.get("session"):
        return True
    ctx.response.send_error(401, "Session required")
    return False


async def log_completion(ctx: RequestContext, handler: Any, error: BaseException | None) -> None:
    print(f"{ctx.method} {ctx.lookup_path} -> {ctx.response.status_code}")


resolver = UrlHandlerResolver(
    {"/inbox": inbox},
    interceptors=[
        AfterCompletion(log_completion),
        MappedInterceptor(BeforeHandle(require_session), include=["/inbox"]),
    ],
)

dispatcher = Dispatcher(
    resolvers=[resolver],
    view_resolvers=[MappingViewResolver({"inbox": JSONView()})],
)

app = FastAPI(title="Flash Redirect Example")
app.mount("/", DispatchApp(dispatcher))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)

    # Test with:
    # curl -i -b session=abc -d hello http://localhost:8000/inbox
    # curl -b session=abc http://localhost:8000/inbox
