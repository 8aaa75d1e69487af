"""Login and logout routes."""

from __future__ import annotations

import json
from typing import Any
from urllib.parse import parse_qs

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response

from snac_admin.web.auth import (
    clear_session_cookie,
    client_key,
    get_facade,
    is_authenticated,
    set_session_cookie,
)

router = APIRouter()

LOGIN_CSP = "default-src 'self'; style-src 'self' 'unsafe-inline'; form-action 'self'; frame-ancestors 'none'"

# Inline so the page renders while every static asset is behind the session gate.
LOGIN_PAGE = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>snac admin - Login</title>
  <style>
    body{margin:0;font-family:system-ui,-apple-system,Segoe UI,Roboto,Helvetica,Arial;background:#0b0d10;color:#e7ebf0}
    .wrap{max-width:460px;margin:72px auto;padding:0 16px}
    .card{background:#12161c;border:1px solid #273141;border-radius:14px;padding:16px}
    .label{font-size:12px;color:#9aa6b2;margin:10px 0 6px}
    input{width:100%;box-sizing:border-box;padding:10px 12px;border-radius:10px;border:1px solid #273141;background:#0f1319;color:#e7ebf0}
    button{margin-top:14px;width:100%;padding:10px 12px;border-radius:10px;border:1px solid #273141;background:#1c2a3f;color:#e7ebf0;cursor:pointer}
    .muted{color:#9aa6b2;font-size:12px;margin-top:10px}
  </style>
</head>
<body>
  <div class="wrap">
    <h1 style="font-size:22px;margin:0 0 12px">snac admin</h1>
    <div class="card">
      <form method="post" action="/login">
        <div class="label">Username</div>
        <input name="user" autocomplete="username" required />
        <div class="label">Password</div>
        <input name="pass" type="password" autocomplete="current-password" required />
        <button type="submit">Sign in</button>
      </form>
      <div class="muted">Bind this admin to localhost; it runs maintenance commands on your instance.</div>
    </div>
  </div>
</body>
</html>
"""


def _wants_json(request: Request) -> bool:
    return request.headers.get("content-type", "").split(";", 1)[0].strip().lower() == "application/json"


async def _read_credentials(request: Request) -> tuple[str, str]:
    raw = await request.body()
    data: dict[str, Any] = {}
    if _wants_json(request):
        try:
            loaded = json.loads(raw.decode("utf-8")) if raw else {}
        except ValueError:
            loaded = {}
        if isinstance(loaded, dict):
            data = loaded
    else:
        try:
            parsed = parse_qs(raw.decode("utf-8"), keep_blank_values=True)
        except UnicodeDecodeError:
            parsed = {}
        data = {key: values[0] for key, values in parsed.items() if values}
    user = data.get("user")
    password = data.get("pass")
    return (
        user if isinstance(user, str) else "",
        password if isinstance(password, str) else "",
    )


@router.get("/login")
def login_page(request: Request):
    if is_authenticated(request):
        return RedirectResponse("/", status_code=302)
    return HTMLResponse(LOGIN_PAGE, headers={"Content-Security-Policy": LOGIN_CSP})


@router.post("/login")
async def login(request: Request):
    user, password = await _read_credentials(request)
    token = get_facade(request).login(user, password, client=client_key(request))
    wants_json = _wants_json(request)
    if token is None:
        if wants_json:
            return JSONResponse(status_code=401, content={"ok": False, "error": "Login failed"})
        return HTMLResponse("Login failed", status_code=401)
    response: Response
    if wants_json:
        response = JSONResponse(content={"ok": True})
    else:
        response = RedirectResponse("/", status_code=303)
    set_session_cookie(response, request, token)
    return response


@router.get("/logout")
def logout(request: Request):
    get_facade(request).logout(client=client_key(request))
    response = RedirectResponse("/login", status_code=302)
    clear_session_cookie(response)
    return response
