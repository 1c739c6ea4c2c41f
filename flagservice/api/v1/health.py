"""Health endpoint reporting flag store reachability."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel

from flagservice.core.config import get_settings
from flagservice.core.errors import FlagStoreError
from flagservice.core.feature_management import get_features_repository, get_opt_in_allowlist

logger = logging.getLogger(__name__)
router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    store_backend: str
    store_reachable: bool
    opt_in_features: int
    timestamp: str


@router.get("/health", response_model=HealthResponse)
async def health():
    backend = get_settings().FLAG_STORE_BACKEND
    try:
        reachable = await get_features_repository().ping()
    except FlagStoreError:
        logger.warning("Flag store health check failed", extra={"backend": backend})
        reachable = False
    return HealthResponse(
        status="healthy" if reachable else "degraded",
        store_backend=backend,
        store_reachable=reachable,
        opt_in_features=len(get_opt_in_allowlist()),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
