from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from strawberry.fastapi import GraphQLRouter

from app.core.config import Settings, get_settings
from app.core.logging_config import setup_logging
from app.db.postgresql import build_engine, build_session_factory
from app.graphql.context import build_context
from app.graphql.schema import schema
from app.routers.stripe_webhook import stripe_router
from app.services.container import build_core_services
from app.services.payment_provider import PaymentProvider, StripePaymentProvider
from app.services.sync_scheduler import SubscriptionSyncScheduler

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    provider: Optional[PaymentProvider] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Injected session factory and provider are wired immediately; otherwise the
    database engine and Stripe client are created on startup.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = None
        if getattr(app.state, "services", None) is None:
            setup_logging()
            engine = build_engine(settings)
            app.state.services = build_core_services(
                settings,
                build_session_factory(engine),
                provider or StripePaymentProvider(settings.stripe_secret_key),
            )
            logger.info(f"FitPass core started (environment={settings.environment})")

        sync_scheduler = None
        if settings.auto_sync_enabled:
            sync_scheduler = SubscriptionSyncScheduler(
                app.state.services.reconciler,
                interval_minutes=settings.auto_sync_interval_minutes,
            )
            await sync_scheduler.start()
        app.state.sync_scheduler = sync_scheduler

        try:
            yield
        finally:
            if sync_scheduler:
                await sync_scheduler.stop()
            if engine is not None:
                await engine.dispose()

    app = FastAPI(title="FitPass Core", lifespan=lifespan)
    app.state.services = None
    if session_factory is not None:
        app.state.services = build_core_services(
            settings,
            session_factory,
            provider or StripePaymentProvider(settings.stripe_secret_key),
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    graphql_app = GraphQLRouter(
        schema=schema,
        context_getter=build_context,
        graphql_ide="graphiql" if not settings.is_production else None
    )
    app.include_router(graphql_app, prefix="/graphql")
    app.include_router(stripe_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
