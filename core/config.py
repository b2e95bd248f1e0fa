"""
core/config.py -- Settings for the admin access service, read once from the environment.

Every environment lookup goes through get_settings(); nothing else in the
tree touches os.environ.

How it is built:
  get_settings() is wrapped in lru_cache, so the first call constructs
      Settings and later calls share that object.

  Settings extends pydantic-settings BaseSettings. Each field is filled from
      the matching upper-case variable (permissions_cache_ttl_seconds ->
      PERMISSIONS_CACHE_TTL_SECONDS) or from a .env file beside the process.

  A model_validator runs after the fields load and applies the SECRET_KEY
      policy, which depends on DEBUG.

Security notes:
  Keys under 32 characters are refused; the HS256 session tokens are only as
  strong as the key.

  The permissions cache TTL cannot change while the process runs. Until an
  entry expires or is cleared, readers keep seeing the role it was built from,
  so the TTL should stay short.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, rbac/, or cache/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("brsadmin.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'brsadmin.db'}"


class Settings(BaseSettings):
    """Service settings. Every field has a default, so tests can build
    Settings() with nothing in the environment beyond DEBUG=true.
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
    # "" means unset; validate_secret_key() replaces it or refuses to start.
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    token_expire_seconds: int = 3600
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Access control
    # ------------------------------------------------------------------

    # Lifetime of a resolved permission set in the in-process cache.
    permissions_cache_ttl_seconds: int = Field(default=300, gt=0)
    cache_purge_interval_seconds: int = Field(default=600, gt=0)
    # Optional JSON file replacing the built-in page requirements table.
    page_requirements_file: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Apply the SECRET_KEY policy.

        Missing key with DEBUG=true: generate one and warn. Session tokens
            are then invalidated by every restart, which is fine locally.

        Missing key otherwise: raise, so a deployment never signs tokens
            with a throwaway key.

        Any key shorter than 32 characters is rejected.
        """
        if not self.secret_key:
            if not self.debug:
                raise ValueError(
                    "SECRET_KEY is not set. Provide it through the environment or .env, "
                    "or set DEBUG=true to run with a generated development key."
                )
            self.secret_key = secrets.token_hex(32)
            logger.warning("SECRET_KEY not set; generated a development key. Sessions end on restart.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the shared Settings instance.

    Tests that change environment variables must call
    get_settings.cache_clear() for the change to be seen.
    """
    return Settings()
