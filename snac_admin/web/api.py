"""FastAPI app for the snac admin gateway."""

from __future__ import annotations

from pathlib import Path

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from snac_admin.facade import GatewayFacade, create_facade
from snac_admin.kernel.config import GatewaySettings, load_settings
from snac_admin.web.auth import client_key, is_api_path, is_authenticated, is_public_path
from snac_admin.web.routes import auth, commands, health, run

MAX_BODY_BYTES = 64 * 1024

SECURITY_HEADERS = {
    "Content-Security-Policy": (
        "default-src 'self'; script-src 'self'; style-src 'self'; img-src 'self' data:; "
        "object-src 'none'; base-uri 'self'; form-action 'self'; frame-ancestors 'none'"
    ),
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Opener-Policy": "same-origin",
}

UI_DIR = Path(__file__).resolve().parent / "ui"


def _with_security_headers(response: Response) -> Response:
    for name, value in SECURITY_HEADERS.items():
        if name not in response.headers:
            response.headers[name] = value
    return response


def _body_too_large() -> Response:
    return _with_security_headers(
        JSONResponse(status_code=413, content={"ok": False, "error": "Request body too large"})
    )


def _declared_body_too_large(headers: Headers) -> bool:
    raw = headers.get("content-length")
    if not raw:
        return False
    try:
        return int(raw) > MAX_BODY_BYTES
    except ValueError:
        return True


class BodyLimitMiddleware:
    """Cap request bodies on the bytes actually received.

    The body is buffered up to ``max_bytes`` before the app runs, so a chunked
    upload without Content-Length is cut off as soon as it crosses the cap.
    """

    def __init__(self, app: ASGIApp, max_bytes: int = MAX_BODY_BYTES) -> None:
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        if _declared_body_too_large(Headers(scope=scope)):
            await _body_too_large()(scope, receive, send)
            return

        buffered: list[Message] = []
        received = 0
        while True:
            message = await receive()
            buffered.append(message)
            if message["type"] != "http.request":
                break
            received += len(message.get("body", b""))
            if received > self.max_bytes:
                await _body_too_large()(scope, receive, send)
                return
            if not message.get("more_body", False):
                break

        async def replay() -> Message:
            if buffered:
                return buffered.pop(0)
            return await receive()

        await self.app(scope, replay, send)


def get_app(settings: GatewaySettings | None = None, *, facade: GatewayFacade | None = None) -> FastAPI:
    if facade is None:
        facade = create_facade(settings or load_settings())
    app = FastAPI(title="snac_admin", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.facade = facade

    @app.middleware("http")
    async def gateway_middleware(request: Request, call_next):
        limiter = request.app.state.facade.rate_limiter
        key = client_key(request)
        decision = limiter.check(key)
        if not decision.allowed:
            request.app.state.facade.logger.event(
                event="ratelimit.exceeded", level="warning", client=key, path=request.url.path
            )
            return _with_security_headers(
                JSONResponse(
                    status_code=429,
                    content={"ok": False, "error": "Too many requests"},
                    headers={"Retry-After": str(decision.retry_after_s)},
                )
            )

        path = request.url.path
        if not is_public_path(path) and not is_authenticated(request):
            if is_api_path(path):
                return _with_security_headers(
                    JSONResponse(status_code=401, content={"ok": False, "error": "Not authenticated"})
                )
            return _with_security_headers(RedirectResponse("/login", status_code=302))

        response = await call_next(request)
        response.headers["RateLimit-Limit"] = str(decision.limit)
        response.headers["RateLimit-Remaining"] = str(decision.remaining)
        return _with_security_headers(response)

    # Registered last so it wraps gateway_middleware: 413 before 429 and 401.
    app.add_middleware(BodyLimitMiddleware, max_bytes=MAX_BODY_BYTES)

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(commands.router)
    app.include_router(run.router)
    if UI_DIR.exists():
        app.mount("/", StaticFiles(directory=UI_DIR, html=True), name="ui")
    return app
