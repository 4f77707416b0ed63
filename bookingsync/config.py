import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./bookingsync.db")

# Hapio (scheduling authority)
HAPIO_BASE_URL = os.getenv("HAPIO_BASE_URL", "https://eu-central-1.hapio.net/v1")
HAPIO_API_TOKEN = os.getenv("HAPIO_API_TOKEN")
# Shared secret used to sign webhook deliveries
HAPIO_SECRET = os.getenv("HAPIO_SECRET")
HAPIO_DEFAULT_LOCATION_ID = os.getenv("HAPIO_DEFAULT_LOCATION_ID")
HAPIO_DEFAULT_RESOURCE_ID = os.getenv("HAPIO_DEFAULT_RESOURCE_ID")
# Static slug -> Hapio ids map, used when the services table has no mapping
HAPIO_SERVICE_MAP_PATH = os.getenv(
    "HAPIO_SERVICE_MAP_PATH", str(Path(__file__).resolve().parent.parent / "hapio-service-map.json")
)
HAPIO_WEBHOOK_MAX_AGE_SECONDS = int(os.getenv("HAPIO_WEBHOOK_MAX_AGE_SECONDS", "300"))

# Bounded timeout for every outbound call; a timeout means "outcome unknown"
EXTERNAL_TIMEOUT_SECONDS = float(os.getenv("EXTERNAL_TIMEOUT_SECONDS", "30"))

# Stripe (payment authority)
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "usd")
# Smallest amount Stripe will charge, in cents
MIN_CHARGE_CENTS = int(os.getenv("MIN_CHARGE_CENTS", "50"))

# Booking policy
RESCHEDULE_CUTOFF_HOURS = float(os.getenv("RESCHEDULE_CUTOFF_HOURS", "72"))
HOLD_TTL_MINUTES = int(os.getenv("HOLD_TTL_MINUTES", "15"))
DEFAULT_DURATION_MINUTES = int(os.getenv("DEFAULT_DURATION_MINUTES", "60"))
BUSINESS_TIMEZONE = os.getenv("BUSINESS_TIMEZONE", "America/New_York")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Bookings <bookings@example.com>")
BUSINESS_NAME = os.getenv("BUSINESS_NAME", "Our Studio")
BUSINESS_PHONE = os.getenv("BUSINESS_PHONE", "")

# Brevo (contact system) - best-effort sync only
BREVO_API_KEY = os.getenv("BREVO_API_KEY")
BREVO_BASE_URL = os.getenv("BREVO_BASE_URL", "https://api.brevo.com/v3")
BREVO_LIST_ID = os.getenv("BREVO_LIST_ID")

RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
