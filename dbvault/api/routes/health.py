from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
def get_health(request: Request) -> dict[str, object]:
    services = request.app.state.services
    settings = services.settings
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.environment,
        "scheduler_running": services.runner.is_running,
        "active_tasks": len(services.monitor.active_tasks()),
        "timestamp": datetime.now(tz=timezone.utc),
    }
