import os

from dotenv import load_dotenv

# Loads .env from the project root
load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./kaapav.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_TEST = ENV_NORMALIZED == "test"
IS_PROD = ENV_NORMALIZED in {"prod", "production"}

# WhatsApp Cloud API
WHATSAPP_PROVIDER = os.getenv("WHATSAPP_PROVIDER", "cloud").strip().lower()
WA_PHONE_ID = os.getenv("WA_PHONE_ID", "")
WA_TOKEN = os.getenv("WA_TOKEN", "")
GRAPH_API_VERSION = os.getenv("GRAPH_API_VERSION", "v21.0")
CATALOG_ID = os.getenv("CATALOG_ID", "")
VERIFY_TOKEN = os.getenv("VERIFY_TOKEN", "")
APP_SECRET = os.getenv("APP_SECRET", "")

# Payments
RAZORPAY_KEY = os.getenv("RAZORPAY_KEY", "")
RAZORPAY_SECRET = os.getenv("RAZORPAY_SECRET", "")
RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET", "")
WORKER_URL = os.getenv("WORKER_URL", "http://localhost:8000").rstrip("/")

# Shipping
SHIPROCKET_TOKEN = os.getenv("SHIPROCKET_TOKEN", "")
SHIPROCKET_EMAIL = os.getenv("SHIPROCKET_EMAIL", "")
SHIPROCKET_PASSWORD = os.getenv("SHIPROCKET_PASSWORD", "")
SHIPROCKET_PICKUP_LOCATION = os.getenv("SHIPROCKET_PICKUP_LOCATION", "Primary")
SHIPROCKET_PICKUP_PINCODE = os.getenv("SHIPROCKET_PICKUP_PINCODE", "560001")

# AI
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-3.5-turbo")

# Telemetry sinks
N8N_WEBHOOK_URL = os.getenv("N8N_WEBHOOK_URL", "")
SHEETS_WEBHOOK_URL = os.getenv("SHEETS_WEBHOOK_URL", "")

# Rate limiting
API_RATE_LIMIT = int(os.getenv("API_RATE_LIMIT", "120"))
API_RATE_WINDOW_SECONDS = int(os.getenv("API_RATE_WINDOW_SECONDS", "60"))
BUTTON_RATE_LIMIT = int(os.getenv("BUTTON_RATE_LIMIT", "10"))
BUTTON_RATE_WINDOW_SECONDS = int(os.getenv("BUTTON_RATE_WINDOW_SECONDS", "10"))

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip()]
if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
    ]

# Auth (JWT)
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", "720"))

ADMIN_SESSION_SECRET = os.getenv("ADMIN_SESSION_SECRET", "")
ADMIN_SESSION_MAX_AGE_SECONDS = int(os.getenv("ADMIN_SESSION_MAX_AGE_SECONDS", "604800"))
ADMIN_SESSION_COOKIE_SECURE = _flag("ADMIN_SESSION_COOKIE_SECURE", "0" if IS_DEV else "1")

DEV_ADMIN_EMAIL = os.getenv("DEV_ADMIN_EMAIL", "admin@kaapav.com").strip()
DEV_ADMIN_PASSWORD = os.getenv("DEV_ADMIN_PASSWORD", "").strip()

SCHEDULER_ENABLED = _flag("SCHEDULER_ENABLED")
