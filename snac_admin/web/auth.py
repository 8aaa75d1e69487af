"""Session cookie helpers for the FastAPI gateway."""

from __future__ import annotations

from fastapi import Request, Response

from snac_admin.facade import GatewayFacade
from snac_admin.kernel.config import SESSION_COOKIE_NAME

PUBLIC_PATHS = {"/login", "/health"}


def get_facade(request: Request) -> GatewayFacade:
    return request.app.state.facade


def client_key(request: Request) -> str:
    client = request.client
    return client.host if client and client.host else "unknown"


def is_public_path(path: str) -> bool:
    return path in PUBLIC_PATHS


def is_api_path(path: str) -> bool:
    return path == "/api" or path.startswith("/api/")


def is_authenticated(request: Request) -> bool:
    return get_facade(request).is_authenticated(request.cookies.get(SESSION_COOKIE_NAME))


def set_session_cookie(response: Response, request: Request, token: str) -> None:
    settings = get_facade(request).settings
    response.set_cookie(
        SESSION_COOKIE_NAME,
        token,
        max_age=settings.session_ttl_ms // 1000,
        path="/",
        httponly=True,
        samesite="strict",
        secure=settings.cookie_secure,
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
