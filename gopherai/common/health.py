"""Liveness and readiness probes."""
from __future__ import annotations

from typing import Dict, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

import gopherai

router = APIRouter(tags=["system"])


class HealthStatus(BaseModel):
    status: str
    version: str = gopherai.__version__
    cache_backend: Optional[str] = None
    stats: Optional[Dict[str, int]] = None


@router.get("/health", response_model=HealthStatus)
def health_check():
    return HealthStatus(status="ok")


@router.get("/ready", response_model=HealthStatus)
def readiness_check(request: Request):
    services = getattr(request.app.state, "services", None)
    if services is None:
        return HealthStatus(status="starting")
    return HealthStatus(
        status="ok",
        cache_backend=services.cache.cache_type.value,
        stats=services.registry.stats(),
    )
