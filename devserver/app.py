from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException

from devserver.config import ServerConfig
from devserver.log import server_log

# key.pem / cert.pem live in the served directory; never hand them out
PRIVATE_SUFFIXES = (".pem",)


class PublicStaticFiles(StaticFiles):
    """StaticFiles that answers 404 for TLS key and certificate files."""

    async def get_response(self, path: str, scope):
        if path.lower().endswith(PRIVATE_SUFFIXES):
            raise HTTPException(status_code=404)
        return await super().get_response(path, scope)


def create_app(config: ServerConfig) -> FastAPI:
    """
    Build the ASGI application for one server run.

    ``GET /`` redirects to the main page; every other path is looked up in
    ``config.static_root`` by StaticFiles (404 when no such file exists,
    no directory listings, no PEM files).
    """
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    # ── Request logging (development only) ────────────────────────────────────
    # Helps track down assets the page asks for that don't exist on disk.
    if not config.is_production:
        @app.middleware("http")
        async def log_requests(request: Request, call_next):
            target = request.url.path
            if request.url.query:
                target += "?" + request.url.query
            server_log.debug("Request: %s %s", request.method, target)
            return await call_next(request)

    # Registered before the mount so it wins over the catch-all static route
    @app.get("/", include_in_schema=False)
    def index():
        return RedirectResponse(config.page_path, status_code=302)

    app.mount(
        "/",
        PublicStaticFiles(directory=config.static_root, html=False),
        name="static",
    )

    return app
