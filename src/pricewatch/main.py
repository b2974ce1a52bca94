"""FastAPI application with lifespan-managed marketplace client and scheduler."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api.router import api_router
from .config import settings
from .currency import CurrencyConverter
from .database import SessionLocal, run_migrations
from .marketplace.client import MarketplaceClient
from .monitor.price_monitor import PriceMonitor
from .monitor.scheduler import MonitorScheduler
from .monitor.search_worker import SearchWorker
from .notifier.dispatcher import NotificationDispatcher
from .notifier.preferences import SqlPreferenceStore
from .store import CatalogStore

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Shared state accessible by API endpoints
app_state: dict = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Running database migrations...")
    run_migrations()

    store = CatalogStore(SessionLocal)
    app_state["store"] = store

    # OAuth (graceful degradation: without it expired tokens cannot be refreshed)
    if settings.oauth_enabled:
        from .marketplace.identity import IdentityProvider

        identity = IdentityProvider()
        app_state["identity"] = identity
        logger.info("OAuth token refresh enabled")
    else:
        identity = None
        logger.info("OAuth client not configured: token refresh disabled")

    client = MarketplaceClient(identity=identity)
    app_state["client"] = client

    converter = CurrencyConverter()
    app_state["converter"] = converter
    if not settings.exchange_rates_enabled:
        logger.info("Exchange rate API key not set: using static fallback rates")

    dispatcher = NotificationDispatcher(SqlPreferenceStore(store), store=store)
    monitor = PriceMonitor(store, client, converter, dispatcher)
    app_state["monitor"] = monitor
    worker = SearchWorker(store, client, price_monitor=monitor)
    app_state["worker"] = worker

    scheduler = MonitorScheduler(worker, store)
    scheduler.start()
    app_state["scheduler"] = scheduler

    logger.info("pricewatch started (marketplace=%s, sandbox=%s)", settings.marketplace_id, settings.marketplace_sandbox)

    yield

    # Shutdown
    scheduler.shutdown()
    await client.close()
    await converter.close()
    if identity is not None:
        await identity.close()
    app_state.clear()
    logger.info("pricewatch stopped")


app = FastAPI(
    title="pricewatch",
    description="Marketplace saved-search and price-drop monitor",
    version="0.1.0",
    lifespan=lifespan,
)
if settings.api_key:
    from .auth import ApiKeyMiddleware
    app.add_middleware(ApiKeyMiddleware)

app.include_router(api_router)
