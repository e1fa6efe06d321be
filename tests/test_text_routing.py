import asyncio

import pytest

from kaapav.conversation.buttons import Action
from kaapav.conversation.text_router import handle_text, match_action, match_category
from tests.fixtures_data import CUSTOMER_PHONE, build_runtime


@pytest.mark.parametrize(
    "text,expected",
    [
        ("do you have jhumkas", "CAT_EARRINGS"),
        ("Show me EARRINGS", "CAT_EARRINGS"),
        ("gold chains for men", "CAT_NECKLACES"),
        ("silver ring size 7", "CAT_RINGS"),
        ("lockets with photo", "CAT_PENDANTS"),
        ("lorem ipsum dolor", None),
    ],
)
def test_match_category_uses_substrings(text, expected):
    assert match_category(text) == expected


@pytest.mark.parametrize(
    "text,expected",
    [
        ("payments not working", Action.PAY_NOW),
        ("tracking my parcel", Action.TRACK_ORDER),
        ("i need help", Action.CHAT_NOW),
        ("refunds take how long", Action.RETURN_POLICY),
        ("any discounts today", Action.OFFERS_MENU),
        ("lorem ipsum dolor", None),
    ],
)
def test_match_action_uses_substrings(text, expected):
    assert match_action(text) == expected


def test_action_table_order_decides_overlaps():
    # "order" is listed before "cancel" and "track"
    assert match_action("cancel my order") == Action.START_ORDER
    assert match_action("where is my order") == Action.START_ORDER
    assert match_action("cancel it please") == Action.CANCEL_ORDER


def test_category_keywords_win_over_actions(monkeypatch):
    runtime = build_runtime()
    db = runtime.session_factory()
    ctx = runtime.context(db)
    routed = []

    async def record(ctx, phone, button_id, **kwargs):
        routed.append(button_id)

    monkeypatch.setattr("kaapav.conversation.text_router.handle_button", record)

    asyncio.run(handle_text(ctx, CUSTOMER_PHONE, "I want to buy jhumkas"))
    asyncio.run(handle_text(ctx, CUSTOMER_PHONE, "payments failing again"))

    assert routed == ["CAT_EARRINGS", "PAY_NOW"]


def test_menu_reaction_needs_a_message_id():
    runtime = build_runtime()
    db = runtime.session_factory()
    ctx = runtime.context(db)

    asyncio.run(handle_text(ctx, CUSTOMER_PHONE, "  MENU  "))

    sent = runtime.transport.sent_to(CUSTOMER_PHONE)
    assert len(sent) == 1
    assert sent[0]["type"] == "interactive"
