from __future__ import annotations

from enum import Enum


class Action(str, Enum):
    """Canonical button identifiers handled by the button router."""

    MAIN_MENU = "MAIN_MENU"
    JEWELLERY_MENU = "JEWELLERY_MENU"
    CHAT_MENU = "CHAT_MENU"
    OFFERS_MENU = "OFFERS_MENU"
    PAYMENT_MENU = "PAYMENT_MENU"
    SOCIAL_MENU = "SOCIAL_MENU"
    ORDER_MENU = "ORDER_MENU"
    ALL_CATEGORIES = "ALL_CATEGORIES"

    OPEN_WEBSITE = "OPEN_WEBSITE"
    OPEN_CATALOG = "OPEN_CATALOG"
    OPEN_FACEBOOK = "OPEN_FACEBOOK"
    OPEN_INSTAGRAM = "OPEN_INSTAGRAM"

    BESTSELLERS = "BESTSELLERS"
    NEW_ARRIVALS = "NEW_ARRIVALS"
    SALE = "SALE"

    PAY_NOW = "PAY_NOW"
    TRACK_ORDER = "TRACK_ORDER"
    CHAT_NOW = "CHAT_NOW"

    CHANGE_LANGUAGE = "CHANGE_LANGUAGE"
    LANG_EN = "LANG_EN"
    LANG_HI = "LANG_HI"
    LANG_KN = "LANG_KN"

    START_ORDER = "START_ORDER"
    CONFIRM_ORDER = "CONFIRM_ORDER"
    CANCEL_ORDER = "CANCEL_ORDER"
    MODIFY_ORDER = "MODIFY_ORDER"
    VIEW_CART = "VIEW_CART"
    CLEAR_CART = "CLEAR_CART"
    COLLECT_ADDRESS = "COLLECT_ADDRESS"

    YES = "YES"
    NO = "NO"

    GIVE_REVIEW = "GIVE_REVIEW"
    RETURN_POLICY = "RETURN_POLICY"
    SHIPPING_INFO = "SHIPPING_INFO"
    ABOUT_US = "ABOUT_US"
    SIZE_GUIDE = "SIZE_GUIDE"


# Prefixes of generated ids, longest match first
DYNAMIC_PREFIXES = ("VARIANT_", "CANCEL_", "ORDER_", "TRACK_", "PROD_", "CAT_", "QTY_", "PAY_")

CATEGORIES = {
    "CAT_EARRINGS": "earrings",
    "CAT_NECKLACES": "necklaces",
    "CAT_BANGLES": "bangles",
    "CAT_RINGS": "rings",
    "CAT_PENDANTS": "pendants",
    "CAT_BRACELETS": "bracelets",
}

_ALIASES: dict[str, list[str]] = {
    Action.MAIN_MENU: ["HOME", "BACK", "GO_BACK", "START", "MENU"],
    Action.JEWELLERY_MENU: ["JEWELRY_MENU", "BROWSE_JEWELLERY", "BROWSE_JEWELRY", "SHOP", "COLLECTIONS"],
    Action.CHAT_MENU: ["CHAT_WITH_US", "SUPPORT", "HELP", "CONTACT"],
    Action.OFFERS_MENU: ["OFFERS_AND_MORE", "OFFERS", "DEALS", "PROMOTIONS"],
    Action.PAYMENT_MENU: ["PAYMENT_TRACK", "PAY_TRACK"],
    Action.SOCIAL_MENU: ["FB_INSTAGRAM", "FOLLOW_US", "SOCIAL_MEDIA"],
    Action.OPEN_WEBSITE: ["WEBSITE", "VISIT_WEBSITE", "WWW"],
    Action.OPEN_CATALOG: ["CATALOG", "CATALOGUE", "WHATSAPP_CATALOG", "VIEW_CATALOG"],
    Action.BESTSELLERS: ["BEST_SELLERS", "TOP_SELLERS", "POPULAR"],
    Action.NEW_ARRIVALS: ["NEW", "LATEST"],
    Action.SALE: ["DISCOUNT", "CLEARANCE"],
    Action.PAY_NOW: ["PAYMENT", "MAKE_PAYMENT", "PAY"],
    Action.TRACK_ORDER: ["TRACKING", "ORDER_STATUS", "WHERE_IS_MY_ORDER"],
    Action.CHAT_NOW: ["TALK_TO_US", "HUMAN", "AGENT", "LIVE_CHAT"],
    Action.OPEN_FACEBOOK: ["FACEBOOK", "FB"],
    Action.OPEN_INSTAGRAM: ["INSTAGRAM", "INSTA", "IG"],
    Action.CHANGE_LANGUAGE: ["LANGUAGE", "LANG"],
    Action.LANG_EN: ["ENGLISH"],
    Action.LANG_HI: ["HINDI"],
    Action.LANG_KN: ["KANNADA"],
    Action.START_ORDER: ["BUY_NOW", "BEGIN_ORDER", "NEW_ORDER", "ORDER", "BUY", "PURCHASE"],
    Action.CONFIRM_ORDER: ["PLACE_ORDER", "SUBMIT_ORDER", "CHECKOUT"],
    Action.CANCEL_ORDER: ["CANCEL"],
    Action.MODIFY_ORDER: ["EDIT_ORDER", "CHANGE_ORDER"],
    Action.VIEW_CART: ["CART", "MY_CART"],
    Action.CLEAR_CART: ["EMPTY_CART"],
    Action.ALL_CATEGORIES: ["CATEGORIES", "BROWSE_CATEGORIES", "CATEGORY_MENU"],
    Action.YES: ["CONFIRM", "OK", "ACCEPT"],
    Action.NO: ["DENY", "REJECT", "DECLINE"],
    Action.GIVE_REVIEW: ["REVIEW", "FEEDBACK", "RATE_US"],
    Action.RETURN_POLICY: ["RETURNS", "RETURN"],
    Action.SHIPPING_INFO: ["DELIVERY_INFO", "SHIPPING"],
    Action.ABOUT_US: ["ABOUT"],
    Action.SIZE_GUIDE: ["SIZE", "SIZING", "SIZE_CHART"],
}

ALIASES: dict[str, str] = {alias: action.value for action, names in _ALIASES.items() for alias in names}
ALIASES.update({slug.upper(): cat_id for cat_id, slug in CATEGORIES.items()})

BUTTON_TITLES = {
    Action.MAIN_MENU: "🏠 Home",
    Action.JEWELLERY_MENU: "💎 Jewellery",
    Action.CHAT_MENU: "💬 Chat with Us!",
    Action.OFFERS_MENU: "🎉 Offers & More",
    Action.PAYMENT_MENU: "💳 Payment & Track",
    Action.OPEN_CATALOG: "📱 Catalogue",
    Action.OPEN_WEBSITE: "🌐 Website",
    Action.BESTSELLERS: "🛍️ Bestsellers",
    Action.NEW_ARRIVALS: "🆕 New Arrivals",
    Action.START_ORDER: "🛒 Order Now",
    Action.TRACK_ORDER: "📦 Track Order",
    Action.CHAT_NOW: "💬 Chat Now",
    Action.VIEW_CART: "🛒 View Cart",
    Action.PAY_NOW: "💳 Pay Now",
}


def _strip_decorations(value: str) -> str:
    for prefix in ("BTN_", "BUTTON_"):
        if value.startswith(prefix):
            value = value[len(prefix):]
    for suffix in ("_BTN", "_BUTTON"):
        if value.endswith(suffix):
            value = value[: -len(suffix)]
    return value


def normalize_button_id(button_id: str | None) -> str:
    """Canonical id for ``button_id``.

    Case and hyphen insensitive, ``BTN_``/``BUTTON_`` decorations removed and
    aliases resolved. Empty input maps to the main menu.
    """
    value = (button_id or "").strip().upper().replace("-", "_").replace(" ", "_")
    value = _strip_decorations(value)
    if not value:
        return Action.MAIN_MENU.value
    return ALIASES.get(value, value)


def to_action(canonical: str) -> Action | None:
    try:
        return Action(canonical)
    except ValueError:
        return None


def split_dynamic(button_id: str | None) -> tuple[str, str] | None:
    """``(prefix, value)`` for generated ids such as ``PROD_<id>``.

    The value keeps the caller's spelling so product and order ids survive.
    """
    raw = (button_id or "").strip()
    upper = raw.upper()
    for decoration in ("BTN_", "BUTTON_"):
        if upper.startswith(decoration):
            raw = raw[len(decoration):]
            upper = upper[len(decoration):]
    for prefix in DYNAMIC_PREFIXES:
        if upper.startswith(prefix) and len(raw) > len(prefix):
            return prefix, raw[len(prefix):]
    return None


def button(action: Action, title: str | None = None) -> dict[str, str]:
    return {"id": action.value, "title": title or BUTTON_TITLES.get(action, action.value.replace("_", " ").title())}


# Exact texts that always bring up the main menu
MENU_KEYWORDS = frozenset(
    {"menu", "hi", "hello", "hey", "hii", "start", "help", "0", "home", "main", "hola", "namaste", "/menu", "/start"}
)
