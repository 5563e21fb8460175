from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cardshop.core.config import Settings, get_settings
from cardshop.core.db import init_models, make_engine, make_sessionmaker
from cardshop.core.errors import install_error_handlers
from cardshop.core.logging import configure_logging, get_logger
from cardshop.core.rate_limit import RateLimiter
from cardshop.core.tasks import BackgroundTaskGroup
from cardshop.integrations.alipay_gateway import AlipayGateway
from cardshop.integrations.mailer import Mailer
from cardshop.integrations.turnstile_client import TurnstileClient
from cardshop.services.notifications import Notifier

# Routers
from cardshop.routers.auth import router as auth_router
from cardshop.routers.orders import router as orders_router
from cardshop.routers.payment_alipay import router as payment_alipay_router
from cardshop.routers.restock_subscriptions import router as restock_router
from cardshop.routers.cron import router as cron_router

from cardshop.routers.admin_orders import router as admin_orders_router
from cardshop.routers.admin_cards import router as admin_cards_router
from cardshop.routers.admin_products import router as admin_products_router

logger = get_logger("app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models(app.state.engine)
    logger.info("startup complete", extra={"site": app.state.settings.SITE_NAME})
    yield
    await app.state.tasks.drain()
    await app.state.engine.dispose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(title=settings.SITE_NAME, lifespan=lifespan)

    # Process-wide collaborators, reached from handlers through cardshop.core.deps
    engine = make_engine(settings.DATABASE_URL)
    sessionmaker = make_sessionmaker(engine)
    tasks = BackgroundTaskGroup()

    app.state.settings = settings
    app.state.engine = engine
    app.state.sessionmaker = sessionmaker
    app.state.tasks = tasks
    app.state.notifier = Notifier(tasks, sessionmaker, Mailer(settings), settings)
    app.state.payment_gateway = AlipayGateway(settings)
    app.state.turnstile = (
        TurnstileClient(settings.TURNSTILE_SECRET_KEY) if settings.TURNSTILE_SECRET_KEY else None
    )
    app.state.order_create_limiter = RateLimiter(
        settings.ORDER_RATE_LIMIT_POINTS, settings.RATE_LIMIT_WINDOW_SECONDS
    )
    app.state.order_query_limiter = RateLimiter(
        settings.ORDER_QUERY_RATE_LIMIT_POINTS, settings.RATE_LIMIT_WINDOW_SECONDS
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    install_error_handlers(app)

    # Public
    app.include_router(auth_router)
    app.include_router(orders_router)
    app.include_router(payment_alipay_router)
    app.include_router(restock_router)
    app.include_router(cron_router)

    # Admin
    app.include_router(admin_orders_router)
    app.include_router(admin_cards_router)
    app.include_router(admin_products_router)

    return app
