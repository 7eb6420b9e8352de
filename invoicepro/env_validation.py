import os
import logging
from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger(__name__)

# Mandatory environment variables for production
REQUIRED_PRODUCTION_ENV_VARS = [
    "SECRET_KEY",
    "DATABASE_URL",
    "CRON_SECRET",
]

PAYMENT_PROCESSOR_ENV_VARS = {
    "stripe": ["STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"],
    "paypal": ["PAYPAL_CLIENT_ID", "PAYPAL_CLIENT_SECRET", "PAYPAL_WEBHOOK_ID"],
}


def configured_processors():
    return [
        name for name, env_vars in PAYMENT_PROCESSOR_ENV_VARS.items()
        if all(os.getenv(var) for var in env_vars)
    ]


def validate_env():
    """
    Validate critical environment variables for Django settings.
    Runs once per process; subsequent calls are idempotent.
    """
    is_production = os.getenv("PRODUCTION", "false").lower() == "true"

    secret_key = os.getenv("SECRET_KEY")
    if not secret_key:
        if is_production:
            raise ImproperlyConfigured("CRITICAL: SECRET_KEY is required in production.")
        else:
            logger.warning("SECRET_KEY not set, using insecure default for development.")

    if is_production:
        missing = [var for var in REQUIRED_PRODUCTION_ENV_VARS if not os.getenv(var)]
        if missing:
            error_msg = f"CRITICAL: Missing required environment variables in production: {', '.join(missing)}"
            logger.critical(error_msg)
            raise ImproperlyConfigured(error_msg)

        if secret_key and (secret_key.startswith("django-insecure") or len(secret_key) < 50):
            error_msg = "CRITICAL: SECRET_KEY must be a long, secure string in production"
            logger.critical(error_msg)
            raise ImproperlyConfigured(error_msg)

        cron_secret = os.getenv("CRON_SECRET", "")
        if len(cron_secret) < 32:
            error_msg = "CRITICAL: CRON_SECRET must be at least 32 characters in production"
            logger.critical(error_msg)
            raise ImproperlyConfigured(error_msg)

    if not configured_processors():
        logger.warning("No payment processor is fully configured; webhooks will reject every event.")

    if not os.getenv("EXCHANGE_RATE_API_KEY"):
        logger.info("EXCHANGE_RATE_API_KEY not set, currency conversion uses the static rate table.")

    logger.info("Environment validation passed successfully")
