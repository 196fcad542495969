import asyncio
import logging
import secrets
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, HTTPException, status
from telegram import Update

from ..errors import NotFoundError
from ..schemas import AccountOut, BudgetOut, ChatCommandIn, ChatCommandOut, TransactionOut
from ..security import get_current_identity, get_services
from ..services import Services
from ..telegram_bot import event_from_update

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/telegram", tags=["telegram"])


def _check_webhook_secret(expected: str | None, received: str | None) -> None:
    if expected is None:
        return
    if received is None or not secrets.compare_digest(expected.encode(), received.encode()):
        logger.warning("Rejected Telegram webhook call with a missing or wrong secret token")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid webhook secret.")


@router.post("/webhook")
async def telegram_webhook(
    payload: dict[str, Any] = Body(...),
    services: Services = Depends(get_services),
    secret_token: str | None = Header(default=None, alias="X-Telegram-Bot-Api-Secret-Token"),
) -> dict[str, bool]:
    _check_webhook_secret(services.settings.telegram_webhook_secret, secret_token)
    if services.dispatcher is None or services.transport is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Telegram bot is not configured.")
    update = Update.de_json(payload, getattr(services.transport, "bot", None))
    event = event_from_update(update) if update is not None else None
    if event is None:
        logger.debug("Ignoring Telegram update without text or callback data")
        return {"ok": True}
    await services.dispatcher.dispatch(event)
    return {"ok": True}


@router.post("/command", response_model=ChatCommandOut)
async def record_command(
    data: ChatCommandIn,
    services: Services = Depends(get_services),
    identity: str = Depends(get_current_identity),
) -> ChatCommandOut:
    """Record a transaction typed in the dashboard, exactly as if it were sent to the bot."""
    parsed = await asyncio.to_thread(services.engine.parser.parse, data.message)
    if parsed is None:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Unable to parse message.")
    try:
        transaction = await asyncio.to_thread(services.engine.record, parsed)
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Account '{parsed.account_name}' not found."
        ) from exc

    logger.info("Recorded transaction %s from dashboard command by %s", transaction.id, identity)
    store = services.store
    return ChatCommandOut(
        parsed=parsed,
        transaction=TransactionOut.model_validate(transaction),
        accounts=[AccountOut.model_validate(account) for account in store.get_accounts()],
        budgets=[BudgetOut.model_validate(budget) for budget in store.get_budgets()],
    )
