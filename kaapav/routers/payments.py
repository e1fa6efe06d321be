import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse

from kaapav.conversation.context import ConversationContext
from kaapav.core import config
from kaapav.deps import get_context
from kaapav.integrations.razorpay import verify_signature
from kaapav.services.payments import handle_callback, handle_webhook_event

router = APIRouter(prefix="/api/payment", tags=["payments"])
logger = logging.getLogger(__name__)


@router.get("/callback")
async def payment_callback(request: Request, ctx: ConversationContext = Depends(get_context)):
    params = dict(request.query_params)
    target = await handle_callback(ctx.db, ctx.gateway, ctx.razorpay, params, events=ctx.events)
    logger.info("payment callback", extra={"order_id": params.get("order_id")})
    return RedirectResponse(target, status_code=302)


@router.post("/webhook")
async def payment_webhook(request: Request, ctx: ConversationContext = Depends(get_context)):
    body = await request.body()
    secret = config.RAZORPAY_WEBHOOK_SECRET
    if secret:
        if not verify_signature(body, request.headers.get("X-Razorpay-Signature"), secret):
            logger.warning("payment webhook signature mismatch")
            raise HTTPException(status_code=400, detail="Invalid signature")
    else:
        logger.warning("RAZORPAY_WEBHOOK_SECRET not set; payment webhook accepted unsigned")

    try:
        event = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")

    outcome = await handle_webhook_event(ctx.db, ctx.gateway, event, events=ctx.events)
    logger.info("payment webhook %s -> %s", event.get("event"), outcome, extra={"event": event.get("event")})
    return {"status": "ok", "result": outcome}
