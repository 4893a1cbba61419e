"""
Paystack Webhook Handler

Provider confirmation -> idempotent wallet credit/refund -> notification.
The signature is checked against the raw body before anything is parsed.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from handlers.dependencies import ServiceContainer, get_services
from utils.background_task_runner import run_io_task

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhook/paystack")
async def paystack_webhook(
    request: Request,
    x_paystack_signature: Optional[str] = Header(None, alias="x-paystack-signature"),
    services: ServiceContainer = Depends(get_services),
):
    raw_body = await request.body()
    result = await run_io_task(services.funding.handle_webhook, raw_body, x_paystack_signature)

    if result["status"] == "rejected":
        logger.warning(f"🚨 PAYSTACK_WEBHOOK_REJECTED: {result.get('reason')}")
        raise HTTPException(status_code=400, detail=result.get("reason", "rejected"))

    # Paystack retries anything that is not 200, so duplicates and ignored events are acknowledged
    return result
