"""
Notification dispatch endpoints and the live push channel.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from app.core.dependencies import get_connection_registry, get_notification_dispatcher
from app.core.logging import get_logger
from app.schemas.notification import (
    DispatchRequest,
    DispatchResponse,
    NotificationStatsResponse,
)
from app.services.notification_service import ConnectionRegistry, NotificationDispatcher

logger = get_logger(__name__)

router = APIRouter(tags=["notifications"])


@router.post(
    "/api/notifications/dispatch",
    response_model=DispatchResponse,
    summary="Dispatch a notification",
    description="Delivery is best effort; channel failures are reported, never raised.",
)
async def dispatch_notification(
    request: DispatchRequest,
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> DispatchResponse:
    report = await dispatcher.dispatch(request.envelope, request.recipient)
    return DispatchResponse(
        notification_type=report.notification_type,
        succeeded=report.succeeded,
        failed=report.failed,
        total_failure=report.total_failure,
        skipped=report.skipped,
        outcomes=report.outcomes,
    )


@router.get(
    "/api/notifications/stats",
    response_model=NotificationStatsResponse,
    summary="Cumulative delivery counters",
)
async def notification_stats(
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> NotificationStatsResponse:
    return NotificationStatsResponse(**dispatcher.stats())


@router.websocket("/ws/notifications")
async def notifications_socket(
    websocket: WebSocket,
    user_id: str = Query(...),
    role: str = Query(...),
    org_id: Optional[str] = Query(default=None),
    registry: ConnectionRegistry = Depends(get_connection_registry),
):
    await websocket.accept()
    registry.add(websocket, identity=user_id, role=role, org_id=org_id)
    await websocket.send_json({"type": "connected", "user_id": user_id, "role": role})

    try:
        while True:
            # Inbound frames are keep-alives only.
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Push connection closed by client", user_id=user_id)
    finally:
        registry.remove(websocket)
