"""
DailyFlow integrations service — application entry point.
"""

from __future__ import annotations

import logging
import sys

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import register_middleware
from api.routes import router as api_router
from config.settings import config
from connectors.cache import ResultCache
from connectors.encryption import CredentialCipher
from connectors.facade import IntegrationFacade
from connectors.registry import ConnectorRegistry
from connectors.routes import router as connectors_router
from connectors.token_manager import OAuthSessionManager
from database.session import async_session_factory, engine, init_models
from database.settings_store import SqlSettingsStore

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "asyncpg", "sqlalchemy.engine"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)

HTTP_TIMEOUT = httpx.Timeout(15.0, connect=5.0)


def create_app() -> FastAPI:
    app = FastAPI(
        title="DailyFlow Integrations",
        version="1.0.0",
        description="Projects, messages, calendar and music for the DailyFlow dashboard.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)

    # Routes
    app.include_router(api_router, prefix="/api/v1")
    app.include_router(connectors_router, prefix="/api/v1/connectors")

    @app.on_event("startup")
    async def on_startup():
        cipher = CredentialCipher.from_settings(config)

        if config.is_development:
            logger.info("Creating missing tables…")
            await init_models()

        http = httpx.AsyncClient(timeout=HTTP_TIMEOUT)
        store = SqlSettingsStore(async_session_factory)
        registry = ConnectorRegistry()
        oauth = OAuthSessionManager(store, cipher, http, registry=registry, settings=config)

        app.state.http = http
        app.state.registry = registry
        app.state.facade = IntegrationFacade(
            store,
            cipher,
            http,
            ResultCache(ttl_seconds=config.cache_ttl_seconds),
            oauth,
            settings=config,
        )
        logger.info(
            "Providers: %s",
            ", ".join(p["provider"] for p in registry.list_providers()),
        )
        logger.info("Application ready to accept requests.")

    @app.on_event("shutdown")
    async def on_shutdown():
        http = getattr(app.state, "http", None)
        if http is not None:
            await http.aclose()
        await engine.dispose()

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
