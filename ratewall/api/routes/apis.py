"""Sample per-resource routes guarded by the limiter.

The request path carries the API id, so every API gets its own bucket (and,
with origin-address limiting, one bucket per caller and API).
"""

from __future__ import annotations

from fastapi import APIRouter

router = APIRouter(prefix="/apis", tags=["APIs"])


@router.get("/{api_id}")
def get_api(api_id: str) -> dict:
    return {"api_id": api_id, "status": "ok"}
