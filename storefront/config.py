import os
from pathlib import Path
from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)

DATABASE_URL = os.getenv("DATABASE_URL")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Stripe sends "Stripe-Signature"; other providers use their own header
WEBHOOK_SIGNATURE_HEADER = os.getenv("WEBHOOK_SIGNATURE_HEADER", "Stripe-Signature")
WEBHOOK_TOLERANCE_SECONDS = int(os.getenv("WEBHOOK_TOLERANCE_SECONDS", "300"))

ORDER_LOOKUP_MAX_ATTEMPTS = int(os.getenv("ORDER_LOOKUP_MAX_ATTEMPTS", "3"))
ORDER_LOOKUP_DELAY_SECONDS = float(os.getenv("ORDER_LOOKUP_DELAY_SECONDS", "1.0"))


def get_webhook_secret():
    # Read per call so a rotated secret is picked up without a restart
    return os.getenv("STRIPE_WEBHOOK_SECRET")


def get_jwt_secret():
    return os.getenv("JWT_SECRET")
