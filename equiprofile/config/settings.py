"""
Runtime settings loaded from environment variables.

Feature flags default to off so a fresh deploy runs without Stripe.
In production the core secrets are mandatory and the placeholder admin
unlock password is refused; validate_settings() raises instead of letting
the app boot half-configured.
"""

import os
import logging
from dataclasses import dataclass
from typing import List, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_UNLOCK_PASSWORD = "change-me"
DEFAULT_DATABASE_URL = "sqlite:///./equiprofile.db"
DEFAULT_ADMIN_SESSION_TTL_MINUTES = 30

CORE_REQUIRED_VARS = ("DATABASE_URL", "JWT_SECRET", "ADMIN_UNLOCK_PASSWORD")
STRIPE_REQUIRED_VARS = ("STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET")


class ConfigurationError(Exception):
    """Raised when required configuration is missing or unsafe."""

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        self.missing = missing or []
        super().__init__(message)


def _env_flag(environ: Mapping[str, str], name: str) -> bool:
    return environ.get(name, "false").strip().lower() == "true"


@dataclass(frozen=True)
class Settings:
    """Application settings. Build with Settings.from_env() outside tests."""

    environment: str = "development"
    database_url: str = DEFAULT_DATABASE_URL
    jwt_secret: str = ""
    admin_unlock_password: str = DEFAULT_ADMIN_UNLOCK_PASSWORD
    admin_session_ttl_minutes: int = DEFAULT_ADMIN_SESSION_TTL_MINUTES

    # Stripe (only used if enable_stripe is true)
    enable_stripe: bool = False
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_monthly_price_id: str = ""
    stripe_yearly_price_id: str = ""

    base_url: str = "http://localhost:3000"
    app_version: str = "0.1.0"
    git_commit: str = ""

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Read settings from environ (defaults to os.environ)."""
        env = os.environ if environ is None else environ
        return cls(
            environment=env.get("ENVIRONMENT", env.get("NODE_ENV", "development")),
            database_url=env.get("DATABASE_URL", DEFAULT_DATABASE_URL),
            jwt_secret=env.get("JWT_SECRET", ""),
            admin_unlock_password=env.get("ADMIN_UNLOCK_PASSWORD", DEFAULT_ADMIN_UNLOCK_PASSWORD),
            admin_session_ttl_minutes=int(
                env.get("ADMIN_SESSION_TTL_MINUTES", str(DEFAULT_ADMIN_SESSION_TTL_MINUTES))
            ),
            enable_stripe=_env_flag(env, "ENABLE_STRIPE"),
            stripe_secret_key=env.get("STRIPE_SECRET_KEY", ""),
            stripe_webhook_secret=env.get("STRIPE_WEBHOOK_SECRET", ""),
            stripe_monthly_price_id=env.get("STRIPE_MONTHLY_PRICE_ID", ""),
            stripe_yearly_price_id=env.get("STRIPE_YEARLY_PRICE_ID", ""),
            base_url=env.get("BASE_URL", "http://localhost:3000"),
            app_version=env.get("APP_VERSION", "0.1.0"),
            git_commit=env.get("GIT_COMMIT", ""),
        )


def validate_settings(
    settings: Settings,
    environ: Optional[Mapping[str, str]] = None,
) -> None:
    """
    Refuse to start a production process with missing or unsafe config.

    Args:
        settings: Parsed settings
        environ: Environment used to check presence of required vars
            (defaults to os.environ)

    Raises:
        ConfigurationError: listing every missing variable
    """
    if settings.admin_session_ttl_minutes <= 0:
        raise ConfigurationError("ADMIN_SESSION_TTL_MINUTES must be positive")

    if not settings.is_production:
        if not settings.jwt_secret:
            logger.warning("JWT_SECRET not set - all requests will be treated as unauthenticated")
        return

    env = os.environ if environ is None else environ
    missing = [name for name in CORE_REQUIRED_VARS if not env.get(name)]
    if settings.enable_stripe:
        missing.extend(name for name in STRIPE_REQUIRED_VARS if not env.get(name))

    if missing:
        logger.error(
            "Missing required environment variables",
            extra={"missing": missing, "enable_stripe": settings.enable_stripe},
        )
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}",
            missing=missing,
        )

    if settings.admin_unlock_password == DEFAULT_ADMIN_UNLOCK_PASSWORD:
        raise ConfigurationError("ADMIN_UNLOCK_PASSWORD is still set to the default value")


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide settings, read from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Forget cached settings (tests)."""
    global _settings
    _settings = None
