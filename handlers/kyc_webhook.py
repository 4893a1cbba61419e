"""KYC provider callback"""

import logging
from typing import Optional

import orjson
from fastapi import APIRouter, Depends, Header, HTTPException, Request

from config import Config
from handlers.dependencies import ServiceContainer, get_services
from services.webhook_security_service import validate_webhook_signature
from utils.background_task_runner import run_io_task

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhook/kyc")
async def kyc_webhook(
    request: Request,
    x_kyc_signature: Optional[str] = Header(None, alias="X-KYC-Signature"),
    services: ServiceContainer = Depends(get_services),
):
    raw_body = await request.body()
    if not validate_webhook_signature(raw_body, x_kyc_signature, Config.KYC_WEBHOOK_SECRET):
        logger.warning("🚨 KYC_WEBHOOK_REJECTED: invalid signature")
        raise HTTPException(status_code=400, detail="invalid_signature")

    try:
        payload = orjson.loads(raw_body)
        user_id = int(payload["user_id"])
        status = str(payload["status"])
    except (orjson.JSONDecodeError, KeyError, TypeError, ValueError):
        logger.warning("🚨 KYC_WEBHOOK_REJECTED: malformed body")
        raise HTTPException(status_code=400, detail="malformed_body")

    kyc_status = await run_io_task(services.kyc.on_verification_result, user_id, status)
    return {"status": "processed", "user_id": user_id, "kyc_status": kyc_status}
