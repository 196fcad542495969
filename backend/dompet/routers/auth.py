import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, status

from ..clock import reference_zone
from ..errors import TransportError
from ..otp import OtpFailure, OtpValid, RateLimited
from ..render import otp_delivery
from ..schemas import OtpRequest, OtpRequestOut, OtpVerifyRequest, SessionToken
from ..security import create_session_token, get_services
from ..services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

_FAILURE_DETAIL = {
    OtpFailure.NOT_FOUND: "No active code. Request a new one.",
    OtpFailure.EXPIRED: "Code expired. Request a new one.",
    OtpFailure.WRONG_CODE: "Wrong code.",
    OtpFailure.TOO_MANY_ATTEMPTS: "Too many attempts. Request a new code.",
}


async def _resolve_chat_id(services: Services, username: str) -> str:
    chat_id = await asyncio.to_thread(services.store.get_chat_id_by_username, username)
    if chat_id is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Unknown Telegram username. Send any message to the bot first.",
        )
    return chat_id


@router.post("/request-otp", response_model=OtpRequestOut)
async def request_otp(data: OtpRequest, services: Services = Depends(get_services)) -> OtpRequestOut:
    chat_id = await _resolve_chat_id(services, data.username)
    result = await asyncio.to_thread(services.otp.issue, chat_id)
    if isinstance(result, RateLimited):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "reason": result.denial.reason.value,
                "wait_seconds": result.retry_after_seconds,
                "remaining_daily": result.remaining_daily,
            },
        )

    if services.transport is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Telegram bot is not configured.")
    render = otp_delivery(result.code, result.expires_at, reference_zone(services.settings.reference_timezone))
    try:
        await asyncio.wait_for(
            services.transport.send_message(chat_id, render), services.settings.transport_timeout_seconds
        )
    except (TransportError, asyncio.TimeoutError) as exc:
        logger.warning("Could not deliver OTP to @%s: %s", data.username, exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Could not deliver the code.") from exc

    return OtpRequestOut(
        expires_at=result.expires_at,
        is_existing=result.is_existing,
        remaining_daily=result.remaining_daily,
    )


@router.post("/verify-otp", response_model=SessionToken)
async def verify_otp(data: OtpVerifyRequest, services: Services = Depends(get_services)) -> SessionToken:
    chat_id = await _resolve_chat_id(services, data.username)
    result = await asyncio.to_thread(services.otp.verify, chat_id, data.code)
    if not isinstance(result, OtpValid):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "reason": result.reason.value,
                "message": _FAILURE_DETAIL[result.reason],
                "attempts_left": result.attempts_left,
            },
        )

    expires_at = await asyncio.to_thread(services.sessions.authenticate, chat_id)
    return SessionToken(access_token=create_session_token(chat_id, expires_at), expires_at=expires_at)
