"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for authcore happen here. No module should
call os.getenv() or os.environ.get() directly -- components receive a Settings
instance at construction, and the application builds that instance once via
get_settings().

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. Settings
      are never reloaded for the lifetime of the process.

  Explicit injection: the token issuer, OTP manager, spam filter, mail sender
      and lifecycle service all take `settings` as a constructor argument.
      Tests build their own Settings(...) instead of patching the environment.

  @model_validator(mode="after"): enforces the secret policy once all fields
      are resolved.

Security notes:
  [S1] JWT_SECRET and JWT_REFRESH_SECRET shorter than 32 chars are rejected.
  [S2] The two secrets must differ. A refresh token must never verify on the
       access path (and vice versa); equal secrets would reduce that guarantee
       to the `typ` claim alone.
  [S3] Outside DEBUG mode a missing secret is a hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authcore.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true). Field names map to
    upper-cased environment variables, e.g. jwt_secret -> JWT_SECRET.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = "sqlite:///authcore.db"
    allowed_origins: str = "http://localhost,http://localhost:3000"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the "not configured" sentinel; the validator below
    # either generates a dev secret or raises.
    jwt_secret: str = ""
    jwt_refresh_secret: str = ""
    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 60 * 60
    refresh_token_in_body: bool = True
    secure_cookies: bool = False
    service_key: str = ""

    # ------------------------------------------------------------------
    # Credentials and OTP
    # ------------------------------------------------------------------

    # 12 rounds is ~250ms on a current x86 core, above the 100ms floor for
    # interactive login. Tests drop this to 4.
    bcrypt_rounds: int = 12
    otp_length: int = 4
    otp_ttl_seconds: int = 5 * 60

    # ------------------------------------------------------------------
    # Spam filter
    # ------------------------------------------------------------------

    spam_domains: str = ""  # comma separated
    spam_domains_file: str = ""  # JSON array of domains

    # ------------------------------------------------------------------
    # Mail
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_timeout_seconds: int = 30
    mail_from: str = ""
    mail_from_name: str = "MayFest"
    brand_name: str = "MayFest"

    info_phone: str = ""
    info_zalo: str = ""
    info_support_email: str = ""
    info_website: str = ""

    # ------------------------------------------------------------------
    # External collaborators
    # ------------------------------------------------------------------

    turnstile_secret_key: str = ""
    turnstile_verify_url: str = "https://challenges.cloudflare.com/turnstile/v0/siteverify"
    google_client_id: str = ""
    google_client_secret: str = ""
    google_userinfo_url: str = "https://openidconnect.googleapis.com/v1/userinfo"
    external_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def spam_domain_list(self) -> list[str]:
        return [d.strip().lower() for d in self.spam_domains.split(",") if d.strip()]

    @property
    def allowed_origin_list(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the JWT secret policy [S1][S2][S3].

        Dev mode (DEBUG=true): generate any missing secret with a warning.
            Tokens will not survive a restart -- acceptable for local dev.

        Production mode: refuse to start without both secrets.
        """
        for field_name in ("jwt_secret", "jwt_refresh_secret"):
            if getattr(self, field_name):
                continue
            if self.debug:
                setattr(self, field_name, secrets.token_hex(32))
                logger.warning(
                    "WARNING: Using auto-generated %s. Tokens will not persist across restarts.",
                    field_name.upper(),
                )
            else:
                raise ValueError(
                    f"{field_name.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.jwt_secret) < 32 or len(self.jwt_refresh_secret) < 32:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must be at least 32 characters.")
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_REFRESH_SECRET must differ from JWT_SECRET.")
        if self.otp_length < 1:
            raise ValueError("OTP_LENGTH must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
