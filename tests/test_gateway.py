import asyncio

from kaapav.core.errors import WhatsAppSendError
from kaapav.models.message import Message
from kaapav.whatsapp.mock_provider import MockWhatsAppTransport
from tests.fixtures_data import CUSTOMER_PHONE, build_runtime

PAY_LINK = "https://rzp.io/i/kaapav"


class InteractiveRejectingTransport(MockWhatsAppTransport):
    async def post(self, payload):
        if payload.get("type") == "interactive":
            raise WhatsAppSendError(400, '{"error": {"code": 131009, "message": "Parameter value is not valid"}}')
        return await super().post(payload)


def _gateway(transport=None):
    runtime = build_runtime(**({"transport": transport} if transport else {}))
    db = runtime.session_factory()
    return runtime, db, runtime.gateway(db)


def test_cta_url_sends_plain_text_link_before_button():
    runtime, _, gateway = _gateway()

    asyncio.run(gateway.send_cta_url(CUSTOMER_PHONE, "Complete your payment", "Pay Now", PAY_LINK))

    text, cta = runtime.transport.sent_to(CUSTOMER_PHONE)
    assert text["type"] == "text"
    assert PAY_LINK in text["text"]["body"]
    assert cta["interactive"]["type"] == "cta_url"
    assert cta["interactive"]["action"]["parameters"] == {"display_text": "Pay Now", "url": PAY_LINK}


def test_cta_url_button_failure_keeps_text_result():
    runtime, db, gateway = _gateway(InteractiveRejectingTransport())

    result = asyncio.run(gateway.send_cta_url(CUSTOMER_PHONE, "Track your parcel", "Track", "https://kaapav.com/t"))

    assert result.status == "sent"
    assert [payload["type"] for payload in runtime.transport.sent] == ["text"]
    statuses = sorted(row.status for row in db.query(Message).all())
    assert statuses == ["failed", "sent"]


def test_reaction_failure_does_not_raise():
    runtime, _, gateway = _gateway(MockWhatsAppTransport(failing_phones={CUSTOMER_PHONE}))

    assert asyncio.run(gateway.send_reaction(CUSTOMER_PHONE, "wamid.1", "👋")) is None
    assert runtime.transport.sent == []
