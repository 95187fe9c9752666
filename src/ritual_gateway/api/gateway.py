"""
API Gateway -- FastAPI application factory.

Creates the FastAPI app with all routes, middleware, and dependencies.
This is the entrypoint for uvicorn:

    uvicorn ritual_gateway.api.gateway:create_app --factory --host 0.0.0.0 --port 8000

Or for development:

    uvicorn ritual_gateway.api.gateway:app --reload

Middleware chain (outermost first; the first failure short-circuits):
  1. Security headers   -- on every response, errors included
  2. CORS origin guard  -- 403 cors_rejected for disallowed Origin
  3. CORSMiddleware     -- CORS response headers and preflight
  4. Rate limiting      -- token bucket per client, 429 + Retry-After
  5. Authentication     -- Bearer / X-API-Key, 401 unauthorized
  6. Router

Route logic lives in routes/.
"""

import logging
import os
import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..agents import AgentRegistry, register_builtin_agents
from ..config import GatewaySettings, check_production_auth
from ..llm import GenerationService, create_client, default_tool_catalog
from ..orchestration import ChatHandler, RitualWorkflow, WorkflowConfig
from .errors import UnhandledErrorMiddleware, install_exception_handlers
from .middleware.auth import AuthMiddleware
from .middleware.cors import CORSOriginGuard
from .middleware.rate_limit import RateLimitMiddleware, TokenBucketLimiter
from .middleware.security_headers import SecurityHeadersMiddleware
from .routes import agents, chat, health, quick_chat

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Root logging for the service process (LOG_LEVEL, default INFO)."""
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _default_generation(settings: GatewaySettings) -> GenerationService:
    llm = create_client(
        provider=settings.llm_provider,
        model=settings.llm_model,
        timeout=settings.llm_timeout,
    )
    return GenerationService(llm=llm, tools=default_tool_catalog())


def create_app(
    settings: GatewaySettings | None = None,
    registry: AgentRegistry | None = None,
    generation: GenerationService | None = None,
    workflow_config: WorkflowConfig | None = None,
) -> FastAPI:
    """
    Application factory -- creates and configures the FastAPI app.

    Args:
        settings: Gateway configuration (loaded from the environment if None).
        registry: Pre-configured agent registry (built-ins registered if None).
        generation: Generation service (built from settings if None).
        workflow_config: Ritual workflow tunables (derived from settings if None).

    Raises:
        RuntimeError: production mode without API_KEY and without AUTH_DISABLED.
    """
    if settings is None:
        settings = GatewaySettings.from_env()
    check_production_auth(settings)

    if generation is None:
        generation = _default_generation(settings)
    if registry is None:
        registry = AgentRegistry(known_tools=generation.tools.names())
        register_builtin_agents(registry)
    if workflow_config is None:
        workflow_config = WorkflowConfig.from_settings(settings)

    application = FastAPI(
        title="Ritual Gateway API",
        description="Multi-agent chat gateway with a ritual composition workflow",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )
    install_exception_handlers(application)

    # Starlette wraps in reverse order: the last middleware added runs first.
    application.add_middleware(UnhandledErrorMiddleware)
    application.add_middleware(AuthMiddleware, api_key=settings.api_key)
    application.add_middleware(
        RateLimitMiddleware,
        limiter=TokenBucketLimiter(
            points=settings.rate_limit_points,
            window_seconds=settings.rate_limit_window_seconds,
        ),
        trust_forwarded_for=settings.trust_forwarded_for,
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials="*" not in settings.allowed_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "X-API-Key"],
    )
    application.add_middleware(CORSOriginGuard, allowed_origins=settings.allowed_origins)
    application.add_middleware(SecurityHeadersMiddleware)

    application.state.settings = settings
    application.state.registry = registry
    application.state.generation = generation
    application.state.chat_handler = ChatHandler(registry=registry, generation=generation)
    application.state.workflow = RitualWorkflow(
        registry=registry, generation=generation, config=workflow_config
    )
    application.state.start_time = time.time()

    application.include_router(health.router, tags=["Health"])
    application.include_router(agents.router, prefix="/api", tags=["Agents"])
    application.include_router(chat.router, prefix="/api", tags=["Chat"])
    application.include_router(quick_chat.router, prefix="/api", tags=["Chat"])

    logger.info(
        f"[Gateway] API gateway initialized ({registry.count} agents, "
        f"auth={'on' if settings.auth_enabled else 'off'}, env={settings.environment})"
    )
    return application


app = create_app()


def main() -> None:
    """Console entrypoint: serve the gateway with uvicorn."""
    import uvicorn

    configure_logging()
    uvicorn.run(
        "ritual_gateway.api.gateway:create_app",
        factory=True,
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
    )


if __name__ == "__main__":
    main()
