import hashlib
import hmac
import json
import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request
from fastapi.responses import PlainTextResponse

from kaapav.conversation.dispatcher import process_batch
from kaapav.conversation.inbound import WebhookBatch, parse_webhook
from kaapav.core import config
from kaapav.runtime import Runtime

router = APIRouter(tags=["webhook"])
logger = logging.getLogger(__name__)


def verify_signature(body: bytes, header: str | None, secret: str) -> bool:
    """Check ``x-hub-signature-256`` against the app secret. No secret, no check."""
    if not secret:
        return True
    if not header or not header.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, header[len("sha256="):])


@router.get("/webhook")
async def verify_webhook(request: Request):
    qp = request.query_params
    mode = qp.get("hub.mode")
    token = qp.get("hub.verify_token")
    challenge = qp.get("hub.challenge")

    if mode == "subscribe" and config.VERIFY_TOKEN and token == config.VERIFY_TOKEN:
        logger.info("webhook verified")
        return PlainTextResponse(challenge or "")

    raise HTTPException(status_code=403, detail="Invalid verify token")


async def process_webhook(runtime: Runtime, batch: WebhookBatch) -> None:
    db = runtime.session_factory()
    try:
        result = await process_batch(runtime.context(db), batch)
        logger.info("webhook processed statuses=%s messages=%s", result["statuses"], result["messages"])
    except Exception as exc:
        logger.exception("webhook processing failed: %s", exc)
    finally:
        db.close()


@router.post("/webhook")
async def whatsapp_webhook(request: Request, background_tasks: BackgroundTasks):
    body = await request.body()
    if not verify_signature(body, request.headers.get("x-hub-signature-256"), config.APP_SECRET):
        logger.warning("webhook signature mismatch")
        raise HTTPException(status_code=403, detail="Invalid signature")

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")

    batch = parse_webhook(payload)
    if not batch.statuses and not batch.messages:
        return {"status": "ignored"}

    background_tasks.add_task(process_webhook, request.app.state.runtime, batch)
    return {"status": "ok"}
