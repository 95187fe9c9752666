"""
Gateway configuration -- loaded once from environment variables.

  API_KEY                       Shared secret for Bearer / X-API-Key auth
  AUTH_DISABLED                 Explicit opt-out of auth in production
  ENV / ENVIRONMENT             "production" | "staging" | "development" (default)
  ALLOWED_ORIGINS               Comma-separated CORS allow-list ("*" = any origin)
                                (CORS_ORIGINS is accepted as a fallback name)
  RATE_LIMIT_POINTS             Requests per window per client (default: 100)
  RATE_LIMIT_WINDOW_SECONDS     Window length (default: 60)
  TRUST_FORWARDED_FOR           Key rate limits on X-Forwarded-For (behind a proxy)
  LLM_PROVIDER / LLM_MODEL      Generation backend (auto-detected if unset)
  LLM_TIMEOUT                   Per-call LLM timeout in seconds
  WORKFLOW_PERSPECTIVE_TIMEOUT  Per-attempt timeout for each perspective composer
  WORKFLOW_RUN_TIMEOUT          Global deadline for one ritual workflow run
  WORKFLOW_MAX_RETRIES          Retries per perspective invocation
  WORKFLOW_RETRY_BASE_DELAY     Base delay for exponential backoff

Invalid numeric values fall back to defaults (logged, never fatal).
"""

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:8000",
    "http://localhost:8080",
]
DEFAULT_RATE_LIMIT_POINTS = 100
DEFAULT_RATE_LIMIT_WINDOW = 60.0
DEFAULT_LLM_TIMEOUT = 120.0
DEFAULT_PERSPECTIVE_TIMEOUT = 90.0
DEFAULT_RUN_TIMEOUT = 600.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_BASE_DELAY = 1.0


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("true", "1", "yes")


def _env_number(name: str, default: float, cast=float):
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"[Config] Invalid {name}={raw!r}, using default {default}")
        return default


def _env_origins() -> list[str]:
    origins_env = os.environ.get("ALLOWED_ORIGINS", os.environ.get("CORS_ORIGINS", ""))
    if origins_env.strip():
        return [o.strip() for o in origins_env.split(",") if o.strip()]
    return list(DEFAULT_CORS_ORIGINS)


@dataclass
class GatewaySettings:
    """Process configuration for the gateway. Build with from_env() in production."""

    api_key: str | None = None
    auth_disabled: bool = False
    environment: str = "development"
    allowed_origins: list[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    rate_limit_points: int = DEFAULT_RATE_LIMIT_POINTS
    rate_limit_window_seconds: float = DEFAULT_RATE_LIMIT_WINDOW
    trust_forwarded_for: bool = False
    llm_provider: str | None = None
    llm_model: str | None = None
    llm_timeout: float = DEFAULT_LLM_TIMEOUT
    perspective_timeout: float = DEFAULT_PERSPECTIVE_TIMEOUT
    run_timeout: float = DEFAULT_RUN_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY

    @classmethod
    def from_env(cls) -> "GatewaySettings":
        return cls(
            api_key=os.environ.get("API_KEY", "").strip() or None,
            auth_disabled=_env_flag("AUTH_DISABLED"),
            environment=os.environ.get(
                "ENV", os.environ.get("ENVIRONMENT", "development")
            ).lower(),
            allowed_origins=_env_origins(),
            rate_limit_points=_env_number(
                "RATE_LIMIT_POINTS", DEFAULT_RATE_LIMIT_POINTS, int
            ),
            rate_limit_window_seconds=_env_number(
                "RATE_LIMIT_WINDOW_SECONDS", DEFAULT_RATE_LIMIT_WINDOW
            ),
            trust_forwarded_for=_env_flag("TRUST_FORWARDED_FOR"),
            llm_provider=os.environ.get("LLM_PROVIDER", "").strip() or None,
            llm_model=os.environ.get("LLM_MODEL", "").strip() or None,
            llm_timeout=_env_number("LLM_TIMEOUT", DEFAULT_LLM_TIMEOUT),
            perspective_timeout=_env_number(
                "WORKFLOW_PERSPECTIVE_TIMEOUT", DEFAULT_PERSPECTIVE_TIMEOUT
            ),
            run_timeout=_env_number("WORKFLOW_RUN_TIMEOUT", DEFAULT_RUN_TIMEOUT),
            max_retries=_env_number("WORKFLOW_MAX_RETRIES", DEFAULT_MAX_RETRIES, int),
            retry_base_delay=_env_number(
                "WORKFLOW_RETRY_BASE_DELAY", DEFAULT_RETRY_BASE_DELAY
            ),
        )

    @property
    def is_production(self) -> bool:
        return self.environment in ("production", "prod", "staging")

    @property
    def auth_enabled(self) -> bool:
        return self.api_key is not None


def check_production_auth(settings: GatewaySettings) -> None:
    """
    Call on startup to verify auth is configured in production.

    In production mode:
      - RAISES RuntimeError if API_KEY is not set (blocks startup)
      - Unless AUTH_DISABLED=true is explicitly set (opt-in, logged as warning)
    In development mode:
      - Logs a warning if API_KEY is not set, but allows startup
    """
    if settings.auth_enabled:
        return
    if settings.is_production:
        if settings.auth_disabled:
            logger.warning(
                "[Auth] AUTH_DISABLED=true in production. "
                "All endpoints are unauthenticated."
            )
            return
        raise RuntimeError(
            "API_KEY is required in production mode. "
            "Set API_KEY in the environment. "
            "To explicitly disable auth, set AUTH_DISABLED=true."
        )
    logger.warning("[Auth] No API_KEY set (dev mode). Endpoints are unauthenticated.")
