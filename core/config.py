"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for PollGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. provider_url -> PROVIDER_URL). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Used to make a missing identity provider
      configuration a hard startup failure rather than a per-request error.

Security notes:
  [S1] PROVIDER_URL and PROVIDER_ANON_KEY are required. Without them no
       request can ever be authenticated, so the process refuses to start.

  [S2] trust_peer_address defaults to False. Callers whose origin cannot be
       derived from proxy headers share the "unknown" rate-limit bucket until
       the deployment is fixed or this flag is turned on.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("pollgate.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Everything except the provider connection has a default, so tests only
    need PROVIDER_URL and PROVIDER_ANON_KEY in the environment.
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

    # ------------------------------------------------------------------
    # Identity provider
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured"; the validator below
    # rejects it, so callers never see "".
    provider_url: str = ""
    provider_anon_key: str = ""
    # Deadline for every provider round trip, in seconds.
    provider_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Session cookies
    # ------------------------------------------------------------------

    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_max_attempts: int = 5
    login_window_seconds: int = 15 * 60
    register_max_attempts: int = 3
    register_window_seconds: int = 60 * 60
    rate_limit_sweep_seconds: int = 5 * 60
    rate_limit_retention_seconds: int = 60 * 60
    trust_peer_address: bool = False  # [S2]

    # ------------------------------------------------------------------
    # Request gate
    # ------------------------------------------------------------------

    login_path: str = "/login"
    public_paths: list[str] = ["/login", "/register", "/auth", "/static", "/favicon.ico", "/api"]

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_provider(self) -> "Settings":
        """Refuse to start without a usable identity provider configuration [S1].

        The URL is normalized (trailing slash removed) so the provider adapter
        can join paths onto it without producing "//auth/v1".
        """
        if not self.provider_url or not self.provider_anon_key:
            raise ValueError(
                "PROVIDER_URL and PROVIDER_ANON_KEY are required. "
                "Set them in your environment or .env file."
            )
        if not self.provider_url.startswith(("https://", "http://")):
            raise ValueError("PROVIDER_URL must be an http(s) URL.")
        if self.provider_url.startswith("http://") and not self.debug:
            logger.warning("PROVIDER_URL is not using TLS; credentials will cross the network in clear text.")
        self.provider_url = self.provider_url.rstrip("/")
        if self.provider_timeout_seconds <= 0:
            raise ValueError("PROVIDER_TIMEOUT_SECONDS must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
