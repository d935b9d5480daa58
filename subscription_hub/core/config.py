import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


class Settings:
    """Centralised application configuration sourced from environment variables."""

    def __init__(self) -> None:
        load_dotenv()
        self.service_name = os.getenv("SERVICE_NAME", "subscription_hub")
        self.database_path = Path(os.getenv("DATABASE_PATH", "data/subscriptions.db")).resolve()
        self.stripe_api_key = os.getenv("STRIPE_API_KEY") or os.getenv("STRIPE_KEY")
        self.stripe_webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET")
        self.stripe_api_version = os.getenv("STRIPE_API_VERSION", "2023-10-16")
        self.port = self._get_int("PORT", default=3020)
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.default_trial_days = self._get_int("DEFAULT_TRIAL_DAYS", default=14)
        origins = os.getenv("CORS_ALLOW_ORIGINS")
        if origins:
            self.cors_allow_origins = [item.strip() for item in origins.split(",") if item.strip()]
        else:
            self.cors_allow_origins = ["*"]

    @staticmethod
    def _get_int(key: str, default: Optional[int] = None) -> int:
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise RuntimeError(f"Missing required environment variable: {key}")
            return default
        try:
            return int(value)
        except ValueError as exc:
            raise RuntimeError(f"Environment variable {key} must be an integer") from exc
