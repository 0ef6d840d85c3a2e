"""
Real-time communication API endpoints for TaskHub.

This module exposes the WebSocket event channel and a read-only view of a
principal's live connections.
"""

from typing import Any

from fastapi import APIRouter, Depends, WebSocket

from ..auth.dependencies import get_container, require_admin_or_owner
from ..models import Principal
from ..realtime.websocket_handler import CLOSE_TRY_AGAIN_LATER, handle_websocket_connection
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

realtime_router = APIRouter(prefix="/api", tags=["realtime"])


@realtime_router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """
    Event channel. Authenticate with `Authorization: Bearer <token>`,
    `Sec-WebSocket-Protocol: bearer, <token>` or `?token=<token>`.
    """
    container = getattr(websocket.app.state, "container", None)
    if container is None or not container.is_initialized:
        await websocket.accept()
        await websocket.close(code=CLOSE_TRY_AGAIN_LATER, reason="service_unavailable")
        return
    await handle_websocket_connection(websocket, container)


@realtime_router.get("/connections/{user_id}")
async def get_principal_connections(
    user_id: int,
    principal: Principal = Depends(require_admin_or_owner("user_id")),
    container: Any = Depends(get_container),
) -> dict[str, Any]:
    """Live connections and joined rooms for one principal. Admins or the principal only."""
    registry = container.presence_registry
    connections = []
    for connection_id in sorted(registry.connections_for(user_id)):
        connection = registry.get_connection(connection_id)
        if connection is None:
            continue
        connections.append(
            {
                "connection_id": connection_id,
                "state": connection.state.value,
                "connected_at": connection.connected_at,
                "rooms": sorted(str(room) for room in registry.rooms_for(connection_id)),
            }
        )

    logger.debug("Connection info requested", user_id=user_id, requested_by=principal.id)
    return {"user_id": user_id, "online": registry.is_online(user_id), "connections": connections}
