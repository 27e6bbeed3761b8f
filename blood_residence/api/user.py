"""User API routes for Blood Residence.

Endpoints for the signed-in profile: notifications, the Telegram link,
and resolved capabilities.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from ..core import CurrentUserDep, SessionDep
from ..schemas import (
    CapabilitiesResponse,
    MarkAllReadResponse,
    NotificationResponse,
    NotificationsListResponse,
    TelegramConnectionResponse,
)
from ..services.notifications import (
    DISPLAY_LIMIT,
    NotificationNotFoundError,
    NotificationStore,
)
from ..services.telegram_connections import TelegramConnectionManager

router = APIRouter(prefix="/me", tags=["user"])


# =============================================================================
# NOTIFICATIONS
# =============================================================================


@router.get("/notifications", response_model=NotificationsListResponse)
async def get_my_notifications(
    current_user: CurrentUserDep,
    session: SessionDep,
):
    """The 50 most recent notifications, newest first."""
    store = NotificationStore(session)
    notifications = await store.list_recent(current_user.id, limit=DISPLAY_LIMIT)
    unread = await store.unread_count(current_user.id)

    return NotificationsListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in notifications],
        unread_count=unread,
    )


@router.post("/notifications/read-all", response_model=MarkAllReadResponse)
async def mark_all_my_notifications_read(
    current_user: CurrentUserDep,
    session: SessionDep,
):
    marked = await NotificationStore(session).mark_all_read(current_user.id)
    return MarkAllReadResponse(marked=len(marked))


@router.post("/notifications/{notification_id}/read", response_model=NotificationResponse)
async def mark_my_notification_read(
    notification_id: UUID,
    current_user: CurrentUserDep,
    session: SessionDep,
):
    try:
        notification = await NotificationStore(session).mark_read(current_user.id, notification_id)
    except NotificationNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found",
        )
    return NotificationResponse.model_validate(notification)


# =============================================================================
# TELEGRAM
# =============================================================================


@router.get("/telegram", response_model=TelegramConnectionResponse)
async def get_my_telegram_connection(
    current_user: CurrentUserDep,
    session: SessionDep,
):
    connection = await TelegramConnectionManager(session).get_connection(current_user.id)
    if connection is None:
        return TelegramConnectionResponse()
    return TelegramConnectionResponse.model_validate(connection)


@router.post("/telegram/code", response_model=TelegramConnectionResponse)
async def generate_my_telegram_code(
    current_user: CurrentUserDep,
    session: SessionDep,
):
    """Issue a new pairing code. Any existing link is reset."""
    manager = TelegramConnectionManager(session)
    await manager.generate_code(current_user.id)
    connection = await manager.get_connection(current_user.id)
    return TelegramConnectionResponse.model_validate(connection)


# =============================================================================
# CAPABILITIES
# =============================================================================


@router.get("/capabilities", response_model=CapabilitiesResponse)
async def get_my_capabilities(current_user: CurrentUserDep):
    return CapabilitiesResponse(
        user_id=current_user.id,
        username=current_user.username,
        role=current_user.role.value,
        capabilities=sorted(c.value for c in current_user.capabilities),
    )
