from __future__ import annotations

import logging
from typing import Callable

import httpx
from sqlalchemy.orm import Session

from kaapav.ai.openai_provider import OpenAIProvider
from kaapav.ai.responder import AIResponder
from kaapav.conversation.context import ConversationContext
from kaapav.conversation.state import ConversationStateStore
from kaapav.core.config import (
    BUTTON_RATE_LIMIT,
    BUTTON_RATE_WINDOW_SECONDS,
    OPENAI_API_KEY,
    OPENAI_MODEL,
    RAZORPAY_KEY,
    RAZORPAY_SECRET,
    SHIPROCKET_EMAIL,
    SHIPROCKET_PASSWORD,
    SHIPROCKET_TOKEN,
    WHATSAPP_PROVIDER,
)
from kaapav.core.kv_store import SqlTTLStore, TTLStore
from kaapav.core.rate_limiter import KeyValueRateLimiterService, RateLimiterService
from kaapav.integrations.razorpay import RazorpayClient
from kaapav.integrations.shiprocket import ShiprocketClient
from kaapav.services.event_bus import EventBus
from kaapav.services.event_handlers import register_handlers
from kaapav.whatsapp.base import WhatsAppTransport
from kaapav.whatsapp.cloud_provider import CloudWhatsAppTransport
from kaapav.whatsapp.gateway import MessageGateway
from kaapav.whatsapp.mock_provider import MockWhatsAppTransport
from kaapav.whatsapp.telemetry import TelemetrySink

logger = logging.getLogger(__name__)


class Runtime:
    """Long-lived collaborators shared by requests, jobs and background tasks.

    Built once at startup and stored on ``app.state``; request handlers get a
    fresh :class:`ConversationContext` bound to their own session.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        transport: WhatsAppTransport,
        kv: TTLStore,
        button_limiter: RateLimiterService,
        telemetry: TelemetrySink | None = None,
        razorpay: RazorpayClient | None = None,
        shiprocket: ShiprocketClient | None = None,
        ai: AIResponder | None = None,
        events: EventBus | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.transport = transport
        self.kv = kv
        self.button_limiter = button_limiter
        self.telemetry = telemetry or TelemetrySink(sheets_url="", n8n_url="")
        self.razorpay = razorpay
        self.shiprocket = shiprocket
        self.ai = ai or AIResponder(None)
        self.events = events or EventBus()
        self.http_client = http_client

    def gateway(self, db: Session) -> MessageGateway:
        return MessageGateway(db, self.transport, telemetry=self.telemetry)

    def context(self, db: Session) -> ConversationContext:
        return ConversationContext(
            db=db,
            gateway=self.gateway(db),
            states=ConversationStateStore(db),
            kv=self.kv,
            button_limiter=self.button_limiter,
            razorpay=self.razorpay,
            shiprocket=self.shiprocket,
            ai=self.ai,
            events=self.events,
        )

    async def aclose(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()


def build_runtime(session_factory: Callable[[], Session]) -> Runtime:
    client = httpx.AsyncClient(timeout=httpx.Timeout(20.0, connect=5.0))
    if WHATSAPP_PROVIDER == "mock":
        transport: WhatsAppTransport = MockWhatsAppTransport()
    else:
        transport = CloudWhatsAppTransport(client=client)
    kv = SqlTTLStore(session_factory)
    events = register_handlers(EventBus(), session_factory)
    runtime = Runtime(
        session_factory=session_factory,
        transport=transport,
        kv=kv,
        button_limiter=KeyValueRateLimiterService(
            kv, limit=BUTTON_RATE_LIMIT, window_seconds=BUTTON_RATE_WINDOW_SECONDS
        ),
        telemetry=TelemetrySink(client=client),
        razorpay=RazorpayClient(RAZORPAY_KEY, RAZORPAY_SECRET, client=client),
        shiprocket=ShiprocketClient(
            token=SHIPROCKET_TOKEN, email=SHIPROCKET_EMAIL, password=SHIPROCKET_PASSWORD, client=client
        ),
        ai=AIResponder(OpenAIProvider(OPENAI_API_KEY, model=OPENAI_MODEL, client=client)),
        events=events,
        http_client=client,
    )
    logger.info("runtime ready provider=%s", WHATSAPP_PROVIDER)
    return runtime
