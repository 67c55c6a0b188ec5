"""Google Calendar push notification receiver.

Google retries any non-2xx answer, so everything except a malformed request
is acknowledged with 200; handling problems are logged instead.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from bookingsync.api.v1.deps import get_reconciler
from bookingsync.core.errors import BookingSyncError, ValidationError
from bookingsync.services.calendar_notifications import parse_notification
from bookingsync.services.sync_reconciler import SyncReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/google-calendar")
async def google_calendar_webhook(
    request: Request,
    reconciler: SyncReconciler = Depends(get_reconciler),
) -> dict:
    try:
        notification = parse_notification(request.headers)
    except ValidationError as e:
        logger.warning(f"Rejected calendar webhook: {e.message}")
        raise HTTPException(status_code=400, detail=e.message)

    try:
        result = await reconciler.handle_notification(notification)
    except BookingSyncError as e:
        logger.error(
            f"Calendar notification on channel {notification.channel_id} "
            f"(message {notification.message_number}) not applied: {e.message}"
        )
        return {"ok": True, "action": "failed"}

    logger.info(
        f"Calendar notification on channel {notification.channel_id} "
        f"({notification.resource_state.value}): {result.action.value}"
    )
    return {"ok": True, "action": result.action.value}
