"""
Notification API endpoints for TaskHub.

Principals read and manage their own stored notifications here, including
the ones queued while they were offline. Administrators can broadcast a
system notification to every active principal or to an explicit list. Each
recipient gets a stored record; online recipients also get it pushed over the
event channel.
"""

from typing import Any, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator

from ..auth.dependencies import get_container, get_current_principal, require_role
from ..error_types import ErrorMessages
from ..exceptions import ResourceNotFoundError
from ..models import Notification, NotificationType, Principal, Role
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

notification_router = APIRouter(prefix="/api/notifications", tags=["notifications"])


class SystemNotificationRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1, max_length=4000)
    target: Literal["all"] | list[int] = Field(default="all", description='"all" or a list of principal ids')
    type: NotificationType = NotificationType.GENERAL_NOTIFICATION

    @field_validator("target")
    @classmethod
    def validate_target(cls, v: Literal["all"] | list[int]) -> Literal["all"] | list[int]:
        if isinstance(v, list):
            if not v:
                raise ValueError("target list cannot be empty")
            if any(principal_id <= 0 for principal_id in v):
                raise ValueError("principal ids must be positive")
        return v


class SystemNotificationResponse(BaseModel):
    message: str
    recipients: int


class Pagination(BaseModel):
    page: int
    limit: int
    count: int


class NotificationListResponse(BaseModel):
    notifications: list[Notification]
    unread_count: int
    pagination: Pagination


@notification_router.get("", response_model=NotificationListResponse)
async def list_notifications(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    unread_only: bool = Query(default=False),
    principal: Principal = Depends(get_current_principal),
    container: Any = Depends(get_container),
) -> NotificationListResponse:
    """The caller's notifications, newest first."""
    persistence = container.persistence
    notifications = await persistence.list_notifications(
        principal.id, limit=limit, offset=(page - 1) * limit, unread_only=unread_only
    )
    unread_count = await persistence.count_unread_notifications(principal.id)
    return NotificationListResponse(
        notifications=notifications,
        unread_count=unread_count,
        pagination=Pagination(page=page, limit=limit, count=len(notifications)),
    )


@notification_router.patch("/read-all")
async def mark_all_notifications_read(
    principal: Principal = Depends(get_current_principal),
    container: Any = Depends(get_container),
) -> dict[str, Any]:
    updated = await container.persistence.mark_all_notifications_read(principal.id)
    logger.info("Notifications marked read", principal_id=principal.id, updated=updated)
    return {"message": "All notifications marked as read", "updated": updated}


@notification_router.patch("/{notification_id}/read", response_model=Notification)
async def mark_notification_read(
    notification_id: int,
    principal: Principal = Depends(get_current_principal),
    container: Any = Depends(get_container),
) -> Notification:
    """Mark one of the caller's notifications read. Someone else's answers 404."""
    notification = await container.persistence.mark_notification_read(principal.id, notification_id)
    if notification is None:
        raise ResourceNotFoundError(
            ErrorMessages.NOTIFICATION_NOT_FOUND, resource_type="notification", resource_id=notification_id
        )
    return notification


@notification_router.delete("/{notification_id}")
async def delete_notification(
    notification_id: int,
    principal: Principal = Depends(get_current_principal),
    container: Any = Depends(get_container),
) -> dict[str, str]:
    if not await container.persistence.delete_notification(principal.id, notification_id):
        raise ResourceNotFoundError(
            ErrorMessages.NOTIFICATION_NOT_FOUND, resource_type="notification", resource_id=notification_id
        )
    return {"message": "Notification deleted successfully"}


@notification_router.post("/system", response_model=SystemNotificationResponse)
async def send_system_notification(
    request: SystemNotificationRequest,
    admin: Principal = Depends(require_role(Role.ADMIN)),
    container: Any = Depends(get_container),
) -> SystemNotificationResponse:
    notifications = await container.notification_dispatcher.broadcast_system_notification(
        request.target,
        request.title,
        request.content,
        created_by=admin.id,
        notification_type=request.type,
    )
    logger.info(
        "System notification sent",
        created_by=admin.id,
        target="all" if request.target == "all" else "list",
        recipients=len(notifications),
    )
    return SystemNotificationResponse(message="System notification sent", recipients=len(notifications))
