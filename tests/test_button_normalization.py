import pytest

from kaapav.conversation.button_router import ACTION_HANDLERS, DYNAMIC_HANDLERS, _order_id
from kaapav.conversation.buttons import DYNAMIC_PREFIXES, Action, normalize_button_id, split_dynamic, to_action


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("buy-now", "START_ORDER"),
        ("btn_buy_now", "START_ORDER"),
        ("BUY_NOW_BUTTON", "START_ORDER"),
        ("home", "MAIN_MENU"),
        ("Go Back", "MAIN_MENU"),
        ("jewelry_menu", "JEWELLERY_MENU"),
        ("checkout", "CONFIRM_ORDER"),
        ("earrings", "CAT_EARRINGS"),
        ("track_order", "TRACK_ORDER"),
    ],
)
def test_normalize_button_id_resolves_aliases(raw, expected):
    assert normalize_button_id(raw) == expected


def test_normalize_button_id_maps_empty_input_to_main_menu():
    assert normalize_button_id(None) == "MAIN_MENU"
    assert normalize_button_id("   ") == "MAIN_MENU"
    assert normalize_button_id("btn_") == "MAIN_MENU"


def test_normalize_button_id_is_idempotent():
    for raw in ("buy-now", "btn_home", "PROD_ear-001", "something_new", "cat_rings"):
        once = normalize_button_id(raw)
        assert normalize_button_id(once) == once


def test_every_action_has_a_handler():
    missing = [action for action in Action if action not in ACTION_HANDLERS]

    assert missing == []


def test_every_dynamic_prefix_has_a_handler():
    assert set(DYNAMIC_PREFIXES) == set(DYNAMIC_HANDLERS)


def test_split_dynamic_keeps_original_spelling_of_the_value():
    assert split_dynamic("PROD_ear-001") == ("PROD_", "ear-001")
    assert split_dynamic("btn_track_kaa-123456") == ("TRACK_", "kaa-123456")
    assert split_dynamic("PROD_") is None
    assert split_dynamic("MAIN_MENU") is None


def test_variant_prefix_wins_over_shorter_prefixes():
    assert split_dynamic("VARIANT_EAR-001-GOLD") == ("VARIANT_", "EAR-001-GOLD")


def test_order_id_accepts_loose_spellings():
    assert _order_id("kaa-123456") == "KAA-123456"
    assert _order_id("KAA123456") == "KAA-123456"
    assert _order_id("kaa_123456") == "KAA-123456"


def test_to_action_rejects_unknown_ids():
    assert to_action("MAIN_MENU") is Action.MAIN_MENU
    assert to_action("NOT_A_BUTTON") is None
