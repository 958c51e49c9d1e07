from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter

from aesthetech_api.observability.loyalty import get_loyalty_store
from aesthetech_api.observability.scheduler import get_scheduler_store


router = APIRouter(prefix="/observability", tags=["observability"])


@router.get("", summary="Loyalty and scheduler counters")
async def observability_snapshot() -> Dict[str, Any]:
    return {
        "loyalty": get_loyalty_store().snapshot().as_dict(),
        "scheduler": get_scheduler_store().snapshot().as_dict(),
    }
