"""Payment gateway webhook."""

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError as PydanticValidationError

from stakeit.database import get_store
from stakeit.dependencies import get_notifier
from stakeit.errors import StakeItError
from stakeit.logging_config import get_logger
from stakeit.models.goal import GoalStatus
from stakeit.models.payment import ChargeEvent
from stakeit.services.lifecycle import handle_charge_event
from stakeit.services.notifier import Notifier
from stakeit.store.base import GoalStore

router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    store: GoalStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Receive charge events from the payment gateway.

    Always acknowledges so the gateway does not retry forever; problems
    are logged instead.
    """
    try:
        body = await request.json()
        event = ChargeEvent.model_validate(body)
    except (ValueError, PydanticValidationError) as e:
        logger.error("invalid_webhook_event", error=str(e))
        return {"received": True}

    try:
        goal = await handle_charge_event(store, event, notifier)
    except StakeItError as e:
        logger.error("payment_webhook_failed", charge_id=event.data.id, error=e.detail)
        return {"received": True}

    return {"received": True, "activated": bool(goal and goal.status == GoalStatus.ACTIVE)}


@router.get("/webhook")
async def payment_webhook_status():
    return {"status": "ok", "endpoint": "Payment Webhook"}
