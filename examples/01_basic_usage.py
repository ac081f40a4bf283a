"""
Basic usage example of fastapi-request-dispatch.

Demonstrates:
- Registering handlers with request mapping conditions
- Rendering results through a view resolver
- Mounting the dispatcher inside a FastAPI application
"""

from fastapi import FastAPI

from fastapi_request_dispatch import (
    DispatchApp,
    Dispatcher,
    JSONView,
    MappingViewResolver,
    RequestContext,
    RequestMappingResolver,
    ResponseStatusError,
    Result,
    configure_logging,
)

configure_logging()

BOOKS = {"1": {"id": "1", "title": "Dune"}, "2": {"id": "2", "title": "Emma"}}

mappings = RequestMappingResolver()


@mappings.mapping("/books", methods=["GET"])
async def list_books(ctx: RequestContext) -> Result:
    """List every book."""
    return Result(view="books", model={"books": list(BOOKS.values())})


@mappings.mapping("/books/{book_id}", methods=["GET"])
async def show_book(ctx: RequestContext) -> Result:
    """Show one book, 404 when unknown."""
    book = BOOKS.get(ctx.path_variables["book_id"])
    if book is None:
        raise ResponseStatusError("Book not found", status_code=404)
    return Result(view="books", model=book)


@mappings.mapping("/books", methods=["GET"], params=["format=csv"])
def export_books(ctx: RequestContext) -> None:
    """Blocking handler, runs in the thread pool; writes the response itself."""
    ctx.response.media_type = "text/csv"
    ctx.response.write("id,title\n")
    for book in BOOKS.values():
        ctx.response.write(f"{book['id']},{book['title']}\n")


dispatcher = Dispatcher(
    resolvers=[mappings],
    view_resolvers=[MappingViewResolver({"books": JSONView()})],
)

app = FastAPI(title="Basic Dispatch Example")


@app.get("/")
async def public_endpoint():
    """Plain FastAPI route next to the mounted dispatcher."""
    return {"message": "Hello, World!"}


app.mount("/library", DispatchApp(dispatcher))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)

    # Test with:
    # curl http://localhost:8000/library/books
    # curl http://localhost:8000/library/books/1
    # curl "http://localhost:8000/library/books?format=csv"
