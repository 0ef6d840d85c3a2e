"""
Health endpoint for TaskHub.
"""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request

monitoring_router = APIRouter(prefix="/api", tags=["monitoring"])


@monitoring_router.get("/health")
async def health_check(request: Request) -> dict[str, Any]:
    container = getattr(request.app.state, "container", None)
    details = container.health() if container is not None else {"initialized": False}
    return {
        "status": "healthy" if details["initialized"] else "starting",
        "timestamp": datetime.now(UTC).isoformat(),
        **details,
    }
