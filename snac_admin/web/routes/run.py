"""Command execution route."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from snac_admin.web.auth import client_key, get_facade

router = APIRouter()


class RunRequest(BaseModel):
    # Typed loosely; shape errors are reported by the facade as 400s.
    command: Any = None
    args: Any = None


def _bad_request(error: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"ok": False, "error": error})


@router.post("/api/run")
async def run_command(request: Request):
    try:
        body = await request.json()
    except ValueError:
        return _bad_request("Invalid request body")
    try:
        req = RunRequest.model_validate(body)
    except ValidationError:
        return _bad_request("Invalid request body")
    outcome = await get_facade(request).run(req.command, req.args, client=client_key(request))
    return JSONResponse(status_code=outcome.status_code, content=outcome.payload)
