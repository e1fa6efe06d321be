from dataclasses import dataclass, field

LINKS = {
    "website": "https://www.kaapav.com",
    "whatsapp_catalog": "https://wa.me/c/919148330016",
    "wa_me_chat": "https://wa.me/919148330016",
    "offers_bestsellers": "https://www.kaapav.com/shop/category/all-jewellery-12?category=12&search=&order=&tags=16",
    "payment": "https://razorpay.me/@kaapav",
    "shiprocket": "https://www.shiprocket.in/shipment-tracking/",
    "google_review": "https://g.page/r/CaGZJvP_W_uLEBM/review",
    "facebook": "https://www.facebook.com/kaapavfashionjewellery/",
    "instagram": "https://www.instagram.com/kaapavfashionjewellery/",
}

HOME_BUTTON = {"id": "MAIN_MENU", "title": "🏠 Home"}


@dataclass(frozen=True)
class Menu:
    body: str
    buttons: list = field(default_factory=list)
    footer: str = ""


@dataclass(frozen=True)
class ListMenu:
    body: str
    button_text: str
    sections: list = field(default_factory=list)
    footer: str = ""


MAIN_MENU = Menu(
    body=(
        "✨ Welcome to *KAAPAV Luxury Jewellery*! ✨\n\n"
        "👑 Crafted Elegance • Timeless Sparkle 💎\n"
        "Choose an option below 👇"
    ),
    footer="💖 Luxury Meets You, Only at KAAPAV",
    buttons=[
        {"id": "JEWELLERY_MENU", "title": "💎 Jewellery"},
        {"id": "CHAT_MENU", "title": "💬 Chat with Us!"},
        {"id": "OFFERS_MENU", "title": "🎉 Offers & More"},
    ],
)

JEWELLERY_MENU = Menu(
    body="💎 *Explore KAAPAV Collections* 💎\n\n✨ Handcrafted designs, curated for royalty 👑",
    footer="🌐 kaapav.com | 📱 Catalogue",
    buttons=[
        {"id": "OPEN_WEBSITE", "title": "🌐 Website"},
        {"id": "OPEN_CATALOG", "title": "📱 Catalogue"},
        HOME_BUTTON,
    ],
)

OFFERS_MENU = Menu(
    body=(
        "💫 *Exclusive Luxury Offers!* 💫\n\n"
        "🎉 Flat 50% OFF Select Styles ✨\n"
        "🚚 Free Shipping Above ₹498/- 💝"
    ),
    footer="🛍️ KAAPAV Bestsellers",
    buttons=[
        {"id": "BESTSELLERS", "title": "🛍️ Bestsellers"},
        {"id": "PAYMENT_MENU", "title": "💳 Payment & Track"},
        HOME_BUTTON,
    ],
)

PAYMENT_MENU = Menu(
    body=(
        "💎 *Complete Your Sparkle with KAAPAV* 💎\n\n"
        "Choose a secure option:\n"
        "1️⃣ 💳 Payment – UPI or Cards\n"
        "2️⃣ 📦 Track Your Order – Shiprocket\n\n"
        "🚫 No COD ❌"
    ),
    footer="👑 KAAPAV – Luxury, Seamless & Secure ✨",
    buttons=[
        {"id": "PAY_NOW", "title": "💳 Payment"},
        {"id": "TRACK_ORDER", "title": "📦 Track Order"},
        HOME_BUTTON,
    ],
)

CHAT_MENU = Menu(
    body=(
        "💬 *Need Help? We're Here for You!* 💬\n\n"
        "Please describe your query below ⬇️\n"
        "Our support team will assist you with luxury care 👑✨"
    ),
    footer="We are just a tap away 💖",
    buttons=[
        {"id": "CHAT_NOW", "title": "💬 Chat Now"},
        {"id": "SOCIAL_MENU", "title": "🌐 FB & Instagram"},
        HOME_BUTTON,
    ],
)

SOCIAL_MENU = Menu(
    body="🌐 *Follow KAAPAV on Social Media* 🌐\n\nStay connected for luxury vibes 👑✨",
    footer="📲 Choose your platform below 👇",
    buttons=[
        {"id": "OPEN_FACEBOOK", "title": "📘 Facebook"},
        {"id": "OPEN_INSTAGRAM", "title": "📸 Instagram"},
        HOME_BUTTON,
    ],
)

ORDER_MENU = Menu(
    body=(
        "🛒 *Place Your Order* 🛒\n\n"
        "Easy steps:\n"
        "1️⃣ Share product name/image\n"
        "2️⃣ Share delivery address\n"
        "3️⃣ Complete secure payment\n\n"
        "💎 We'll ship within 24 hours!"
    ),
    footer="🚚 Free shipping above ₹498",
    buttons=[
        {"id": "START_ORDER", "title": "🛒 Start Order"},
        {"id": "OPEN_CATALOG", "title": "📱 View Catalog"},
        HOME_BUTTON,
    ],
)

LANGUAGE_MENU = Menu(
    body="🌐 *Choose Your Language*\nभाषा चुनें | ಭಾಷೆ ಆಯ್ಕೆಮಾಡಿ\n\nSelect below 👇",
    footer="💎 KAAPAV - Luxury for Everyone",
    buttons=[
        {"id": "LANG_EN", "title": "🇬🇧 English"},
        {"id": "LANG_HI", "title": "🇮🇳 हिंदी"},
        {"id": "LANG_KN", "title": "🇮🇳 ಕನ್ನಡ"},
    ],
)

CATEGORY_MENU = ListMenu(
    body="💎 *Shop by Category* 💎\n\nWhat are you looking for today?",
    button_text="View Categories",
    footer="Free shipping above ₹498 🚚",
    sections=[
        {
            "title": "Jewellery Types",
            "rows": [
                {"id": "CAT_EARRINGS", "title": "✨ Earrings", "description": "Studs, drops, hoops & more"},
                {"id": "CAT_NECKLACES", "title": "📿 Necklaces", "description": "Chains, pendants, chokers"},
                {"id": "CAT_BANGLES", "title": "💫 Bangles", "description": "Traditional & modern designs"},
                {"id": "CAT_RINGS", "title": "💍 Rings", "description": "Statement & everyday rings"},
                {"id": "CAT_PENDANTS", "title": "🔮 Pendants", "description": "Beautiful pendant designs"},
                {"id": "CAT_BRACELETS", "title": "📿 Bracelets", "description": "Charm & cuff bracelets"},
            ],
        },
        {
            "title": "Special Collections",
            "rows": [
                {"id": "BESTSELLERS", "title": "🏆 Bestsellers", "description": "Top rated by customers"},
                {"id": "NEW_ARRIVALS", "title": "🆕 New Arrivals", "description": "Just added this week"},
                {"id": "OFFERS", "title": "🎉 On Sale", "description": "Flat 50% off select items"},
            ],
        },
    ],
)

STATUS_EMOJI = {
    "pending": "⏳",
    "confirmed": "✅",
    "processing": "⚙️",
    "shipped": "🚚",
    "in_transit": "🛣️",
    "out_for_delivery": "🏃",
    "delivered": "🎉",
    "cancelled": "❌",
    "returned": "↩️",
    "refunded": "💸",
}

SHIPPING_STATUS_TEXT = {
    "shipped": "Shipped!",
    "in_transit": "In Transit",
    "out_for_delivery": "Out for Delivery!",
    "delivered": "Delivered!",
}

FALLBACK_TEXT = "Oops! Something went wrong on our end. 😅\n\nPlease try again or contact our support team."
