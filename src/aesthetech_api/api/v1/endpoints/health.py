from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from aesthetech_api.core.settings import settings
from aesthetech_api.observability.scheduler import get_scheduler_store


router = APIRouter()


class SchedulerStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error"]
    detail: str | None = Field(default=None, description="Human readable status detail")


@router.get("/health", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/scheduler", summary="Loyalty job scheduler status", response_model=SchedulerStatus)
async def scheduler_health(request: Request) -> SchedulerStatus:
    scheduler = getattr(request.app.state, "loyalty_job_scheduler", None)
    if not settings.loyalty_scheduler_enabled or scheduler is None:
        return SchedulerStatus(status="disabled", detail="Loyalty scheduler disabled via settings")

    snapshot = get_scheduler_store().snapshot()
    failing_jobs = [job_id for job_id, job in snapshot.jobs.items() if job.consecutive_failures > 0]
    if failing_jobs:
        return SchedulerStatus(status="error", detail=f"Jobs failing: {', '.join(failing_jobs)}")
    if not scheduler.is_running:
        return SchedulerStatus(status="starting", detail="Loyalty scheduler not running")
    return SchedulerStatus(status="ready")
