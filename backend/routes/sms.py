import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from ..config import settings
from ..schemas import SmsRequest, SmsResult
from ..sms import SmsRelayError, relay_configured, send_via_proxy
from ..utils import normalize_phone_numbers

logger = logging.getLogger(__name__)

router = APIRouter()


def check_api_key(
    x_api_key: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
) -> None:
    """Only enforced when SENDSMS_API_KEY is set."""
    expected = settings.sendsms_api_key
    if not expected:
        return
    supplied = x_api_key or authorization or ""
    if supplied.startswith("Bearer "):
        supplied = supplied[len("Bearer "):]
    if supplied.strip() != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/sms", dependencies=[Depends(check_api_key)])
def sms_status() -> dict:
    return {"ok": True, "configured": relay_configured(), "proxy": settings.sms_proxy_url or None}


@router.post("/sms", response_model=SmsResult, dependencies=[Depends(check_api_key)])
def send_sms(payload: SmsRequest) -> SmsResult:
    """Relay one SMS (or a comma separated batch) through the proxy."""
    to = normalize_phone_numbers(payload.recipient)
    text = payload.body.strip()
    if not to or not text:
        raise HTTPException(status_code=400, detail="Missing recipient or message")
    if not relay_configured():
        raise HTTPException(status_code=503, detail="SMS relay is not configured")

    try:
        result = send_via_proxy({"from": payload.sender or settings.sms_from, "to": to, "text": text})
    except SmsRelayError as exc:
        logger.error("SMS delivery to %s failed: %s", to, exc)
        raise HTTPException(
            status_code=502,
            detail={"error": "SMS delivery failed", "details": str(exc), "status": exc.status_code},
        ) from exc
    return SmsResult(ok=True, result=result)
