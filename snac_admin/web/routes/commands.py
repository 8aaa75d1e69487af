"""Command registry listing."""

from __future__ import annotations

from fastapi import APIRouter, Request

from snac_admin.web.auth import get_facade

router = APIRouter()


@router.get("/api/commands")
def list_commands(request: Request):
    return get_facade(request).commands_listing()
