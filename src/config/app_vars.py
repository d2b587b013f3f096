import os

RABBIT_URL = (
    "amqp://"
    + os.getenv("RABBITMQ_USER", "guest")
    + ":"
    + os.getenv("RABBITMQ_PASSWORD", "guest")
    + "@"
    + os.getenv("RABBITMQ_HOST", "localhost")
    + ":"
    + os.getenv("RABBITMQ_PORT", "5672")
)

DB_HOST = os.getenv("DB_HOST", "localhost")
DB_NAME = os.getenv("DB_NAME", "shipping")
DB_USER = os.getenv("DB_USER", "postgres")
DB_PASS = os.getenv("DB_PASS", "postgres")
DB_PORT = int(os.getenv("DB_PORT", 5432))

# Full SQLAlchemy URL; overrides the DB_* parts when set
DATABASE_URL = os.getenv("DATABASE_URL")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Carrier (Delhivery)
CARRIER_API_TOKEN = os.getenv("DELHIVERY_API_TOKEN") or os.getenv(
    "DELHIVERY_AUTH_TOKEN", ""
)
CARRIER_BASE_URLS = [
    url.strip().rstrip("/")
    for url in os.getenv(
        "CARRIER_BASE_URLS",
        "https://track.delhivery.com,https://staging-express.delhivery.com",
    ).split(",")
    if url.strip()
]
CARRIER_TIMEOUT_SECONDS = float(os.getenv("CARRIER_TIMEOUT_SECONDS", 30))
CARRIER_MAX_ATTEMPTS = int(os.getenv("CARRIER_MAX_ATTEMPTS", 3))
CARRIER_BACKOFF_SECONDS = float(os.getenv("CARRIER_BACKOFF_SECONDS", 0.5))
CARRIER_RATE_LIMIT_COOLDOWN = float(os.getenv("CARRIER_RATE_LIMIT_COOLDOWN", 2))

# Waybill pool
WAYBILL_MIN_STOCK = int(os.getenv("WAYBILL_MIN_STOCK", 100))

# Celery Beat Schedule Time in seconds
TRACKING_POLL_SECONDS = int(os.getenv("TRACKING_POLL_SECONDS", 1800))
WAYBILL_STOCK_CHECK_SECONDS = int(os.getenv("WAYBILL_STOCK_CHECK_SECONDS", 3600))

# Pickup warehouse used when the registry has no entry for a location
DEFAULT_PICKUP_NAME = os.getenv("DEFAULT_PICKUP_NAME", "")
DEFAULT_PICKUP_ADDRESS = os.getenv("DEFAULT_PICKUP_ADDRESS", "")
DEFAULT_PICKUP_CITY = os.getenv("DEFAULT_PICKUP_CITY", "")
DEFAULT_PICKUP_STATE = os.getenv("DEFAULT_PICKUP_STATE", "")
DEFAULT_PICKUP_PINCODE = os.getenv("DEFAULT_PICKUP_PINCODE", "")
DEFAULT_PICKUP_PHONE = os.getenv("DEFAULT_PICKUP_PHONE", "")

# Package defaults (grams / centimetres) applied when a request omits them
DEFAULT_WEIGHT_GRAMS = float(os.getenv("DEFAULT_WEIGHT_GRAMS", 500))
DEFAULT_LENGTH_CM = float(os.getenv("DEFAULT_LENGTH_CM", 10))
DEFAULT_WIDTH_CM = float(os.getenv("DEFAULT_WIDTH_CM", 10))
DEFAULT_HEIGHT_CM = float(os.getenv("DEFAULT_HEIGHT_CM", 10))

SELLER_NAME = os.getenv("SELLER_NAME", "")
DEFAULT_HSN_CODE = os.getenv("DEFAULT_HSN_CODE", "61091000")

# Upper bound on carrier I/O for a single operator request
REQUEST_DEADLINE_SECONDS = float(os.getenv("REQUEST_DEADLINE_SECONDS", 120))

# A PENDING shipment attempt older than this is treated as abandoned
PENDING_ATTEMPT_TTL_SECONDS = float(
    os.getenv("PENDING_ATTEMPT_TTL_SECONDS", REQUEST_DEADLINE_SECONDS * 2)
)
ABANDONED_ATTEMPT_CHECK_SECONDS = int(os.getenv("ABANDONED_ATTEMPT_CHECK_SECONDS", 600))
