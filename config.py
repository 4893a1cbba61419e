"""Configuration management for the escrow marketplace service"""

import os
import logging
from decimal import Decimal

logger = logging.getLogger(__name__)


def _validate_percentage(env_var: str, default: str, min_val: str, max_val: str) -> Decimal:
    """Read a percentage from the environment with bounds checking"""
    try:
        value = Decimal(os.getenv(env_var, default))
    except Exception as e:
        logger.error(f"❌ Invalid {env_var} value '{os.getenv(env_var)}': {e}. Using default {default}%")
        return Decimal(default)

    if value < Decimal(min_val) or value > Decimal(max_val):
        logger.error(f"❌ {env_var}={value}% outside {min_val}%-{max_val}%. Using default {default}%")
        return Decimal(default)

    return value


def _env_flag(env_var: str, default: str) -> bool:
    return os.getenv(env_var, default).lower().strip() in ("1", "true", "yes")


class Config:
    """Application configuration"""

    # Environment detection: ENVIRONMENT takes absolute priority
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"
    CURRENT_ENVIRONMENT = "production" if IS_PRODUCTION else "development"

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL") or (
        None if IS_PRODUCTION else "sqlite:///./escrow_marketplace.db"
    )
    DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "7"))
    DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "15"))
    DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))

    # Currency and fees
    PLATFORM_CURRENCY = os.getenv("PLATFORM_CURRENCY", "NGN")
    ESCROW_FEE_PERCENTAGE = _validate_percentage("ESCROW_FEE_PERCENTAGE", "5.0", "0", "20.0")
    MIN_LISTING_PRICE = Decimal(os.getenv("MIN_LISTING_PRICE", "1.00"))
    WITHDRAWAL_FEE = Decimal(os.getenv("WITHDRAWAL_FEE", "50"))
    MIN_DEPOSIT_AMOUNT = Decimal(os.getenv("MIN_DEPOSIT_AMOUNT", "100"))

    # Escrow lifecycle
    ACCEPTANCE_WINDOW_HOURS = int(os.getenv("ACCEPTANCE_WINDOW_HOURS", "48"))
    ACCEPTANCE_REMINDER_HOURS = int(os.getenv("ACCEPTANCE_REMINDER_HOURS", "12"))
    AUTO_RELEASE_ENABLED = _env_flag("AUTO_RELEASE_ENABLED", "true")
    AUTO_RELEASE_SWEEP_MINUTES = int(os.getenv("AUTO_RELEASE_SWEEP_MINUTES", "5"))
    BALANCE_AUDIT_HOUR_UTC = int(os.getenv("BALANCE_AUDIT_HOUR_UTC", "3"))

    # Dispute policy
    DISPUTE_ALLOW_LATE_FILING = _env_flag("DISPUTE_ALLOW_LATE_FILING", "false")
    DISPUTE_ALLOW_BEFORE_DELIVERY = _env_flag("DISPUTE_ALLOW_BEFORE_DELIVERY", "false")

    # Paystack (deposit and withdrawal rails)
    PAYSTACK_SECRET_KEY = os.getenv("PAYSTACK_SECRET_KEY", "")
    PAYSTACK_BASE_URL = os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co")
    PAYSTACK_CALLBACK_URL = os.getenv("PAYSTACK_CALLBACK_URL", "http://localhost:5000/wallet")
    PAYSTACK_TIMEOUT_SECONDS = int(os.getenv("PAYSTACK_TIMEOUT_SECONDS", "30"))

    # Identity verification callback
    KYC_WEBHOOK_SECRET = os.getenv("KYC_WEBHOOK_SECRET", "")

    # Server
    PORT = int(os.getenv("PORT", "5000"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    @staticmethod
    def validate():
        """Fail fast on configuration that would make money movement unsafe"""
        errors = []
        if not Config.DATABASE_URL:
            errors.append("DATABASE_URL environment variable is required")
        if Config.IS_PRODUCTION and not Config.PAYSTACK_SECRET_KEY:
            errors.append("PAYSTACK_SECRET_KEY is required in production")
        if Config.IS_PRODUCTION and not Config.KYC_WEBHOOK_SECRET:
            errors.append("KYC_WEBHOOK_SECRET is required in production")
        if Config.ACCEPTANCE_REMINDER_HOURS >= Config.ACCEPTANCE_WINDOW_HOURS:
            errors.append("ACCEPTANCE_REMINDER_HOURS must be smaller than ACCEPTANCE_WINDOW_HOURS")

        if errors:
            for error in errors:
                logger.error(f"❌ CONFIG: {error}")
            raise ValueError("; ".join(errors))

        if not Config.PAYSTACK_SECRET_KEY:
            logger.warning("⚠️ PAYSTACK_SECRET_KEY not configured - deposits and payment webhooks are disabled")
        return True

    @staticmethod
    def log_environment_config():
        """Log current environment configuration for debugging"""
        logger.info("🔧 Escrow Marketplace Configuration:")
        logger.info(f"   Environment: {Config.CURRENT_ENVIRONMENT.upper()}")
        logger.info(f"   Database: {Config.DATABASE_URL.split('://')[0] if Config.DATABASE_URL else 'NOT CONFIGURED'}")
        logger.info(f"   Currency: {Config.PLATFORM_CURRENCY}, escrow fee: {Config.ESCROW_FEE_PERCENTAGE}%")
        logger.info(f"   Acceptance window: {Config.ACCEPTANCE_WINDOW_HOURS}h (reminder {Config.ACCEPTANCE_REMINDER_HOURS}h before)")
        logger.info(
            f"   Auto-release: {'enabled' if Config.AUTO_RELEASE_ENABLED else 'DISABLED'}"
            f" every {Config.AUTO_RELEASE_SWEEP_MINUTES} min"
        )
        logger.info(f"   Paystack: {'✅ Configured' if Config.PAYSTACK_SECRET_KEY else '⚠️ not configured'}")
