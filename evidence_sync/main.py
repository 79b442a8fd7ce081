"""Main FastAPI application."""

from contextlib import asynccontextmanager
from typing import Optional
import logging

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from evidence_sync import __version__
from evidence_sync.api import custom_config, health, integrations
from evidence_sync.api.errors import register_exception_handlers
from evidence_sync.core.config import Settings, get_settings
from evidence_sync.core.database import database
from evidence_sync.engines import DeclarativeEndpointRunner, SandboxedCodeRunner
from evidence_sync.integrations import AuthHeaderBuilder, RedisTokenCache
from evidence_sync.services import CustomConfigService, EvidenceWriter, IntegrationService, SyncOrchestrator
from evidence_sync.storage import build_storage
from evidence_sync.stores import (
    MongoAuditLogger,
    MongoCustomConfigStore,
    MongoEvidenceStore,
    MongoIntegrationStore,
    MongoSyncJobStore,
    build_notifier,
)
from evidence_sync.utils.crypto import CredentialVault
from evidence_sync.utils.logging import setup_logging

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)

# Get settings
settings = get_settings()


def wire_services(
    app: FastAPI,
    settings: Settings,
    vault: CredentialVault,
    http_client: httpx.AsyncClient,
    token_cache: Optional[RedisTokenCache] = None,
) -> None:
    """Build the service graph on ``app.state``."""
    integration_store = MongoIntegrationStore(database)
    custom_config_store = MongoCustomConfigStore(database)
    audit = MongoAuditLogger(database)

    header_builder = AuthHeaderBuilder(
        http_client,
        token_cache=token_cache,
        timeout=settings.http_timeout,
        retry_attempts=settings.http_retry_attempts,
    )
    code_runner = SandboxedCodeRunner.from_settings(settings, http_client)

    orchestrator = SyncOrchestrator(
        integrations=integration_store,
        custom_configs=custom_config_store,
        jobs=MongoSyncJobStore(database),
        evidence_writer=EvidenceWriter(build_storage(settings), MongoEvidenceStore(database)),
        audit=audit,
        notifier=build_notifier(http_client, settings.notification_webhook_url),
        vault=vault,
        header_builder=header_builder,
        declarative_runner=DeclarativeEndpointRunner(
            http_client,
            header_builder,
            timeout=settings.http_timeout,
            retry_attempts=settings.http_retry_attempts,
        ),
        code_runner=code_runner,
        http_client=http_client,
        timeout=settings.http_timeout,
        retry_attempts=settings.http_retry_attempts,
    )

    app.state.orchestrator = orchestrator
    app.state.integration_service = IntegrationService(
        integration_store,
        custom_config_store,
        audit,
        vault,
        orchestrator,
        http_client,
        timeout=settings.http_timeout,
        retry_attempts=settings.http_retry_attempts,
    )
    app.state.custom_config_service = CustomConfigService(
        integration_store, custom_config_store, audit, vault, code_runner, token_cache=token_cache
    )
    app.state.token_cache = token_cache


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting up evidence sync service...")
    logger.info(f"Service: {settings.service_name}")
    logger.info(f"Environment: {settings.environment}")

    # A missing or short master secret is fatal here, before any request
    vault = CredentialVault.from_settings(settings)

    await database.connect()
    http_client = httpx.AsyncClient(timeout=settings.http_timeout)
    token_cache = RedisTokenCache(settings.redis_url) if settings.token_cache_enabled else None

    wire_services(app, settings, vault, http_client, token_cache)

    yield

    # Shutdown
    logger.info("Shutting down evidence sync service...")
    await http_client.aclose()
    if token_cache is not None:
        await token_cache.close()
    await database.disconnect()


# Create FastAPI app
app = FastAPI(
    title="Evidence Sync Service",
    description="Collects compliance evidence from builtin and custom integrations",
    version=__version__,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(
    custom_config.router,
    prefix="/api/v1/integrations",
    tags=["custom-integrations"],
)
app.include_router(
    integrations.router,
    prefix="/api/v1/integrations",
    tags=["integrations"],
)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "evidence_sync.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
    )
