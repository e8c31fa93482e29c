from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from academy.core.config import Settings, settings as default_settings
from academy.core.database import Database
from academy.core.exceptions import BusinessException
from academy.services.common_cache import bank_account_cache, order_cache
from academy.services.notification_service import NotificationService, ResendEmailSender
from academy.services.payment_gateway_service import MercadoPagoGateway
from academy.services.upload_service import UploadService
from academy.api.health import router as health_router
from academy.api.checkout import router as checkout_router
from academy.api.webhooks import router as webhooks_router
from academy.api.admin_orders import router as admin_orders_router
from academy.api.exceptions import (
    validation_exception_handler,
    http_exception_handler,
    database_exception_handler,
    general_exception_handler,
    business_exception_handler,
)

import logging

logging.basicConfig(
    level=default_settings.log_level.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle"""
    settings = app.state.settings
    logger.info(f"Starting {settings.app_name}")

    database = Database(settings)
    await database.init_database()
    app.state.database = database

    for cache in (bank_account_cache, order_cache):
        try:
            await cache.init_redis(settings.redis_url_computed)
        except Exception as e:
            # caches degrade to misses
            logger.warning(f"Cache '{cache.key_prefix}' disabled: {e}")
            await cache.close_redis()

    email_sender = ResendEmailSender(settings)
    app.state.gateway = MercadoPagoGateway(settings)
    app.state.notification_service = NotificationService(email_sender, settings)
    app.state.upload_service = UploadService(settings)
    logger.info("Application started")

    yield

    logger.info("Shutting down")
    await app.state.notification_service.drain()
    await app.state.gateway.aclose()
    await email_sender.aclose()
    for cache in (bank_account_cache, order_cache):
        await cache.close_redis()
    await database.close_database()
    logger.info("Shutdown complete")


def create_app(settings: Settings = default_settings) -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Academy checkout, order and payment service",
        debug=settings.debug,
        lifespan=lifespan
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.app_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(checkout_router)
    app.include_router(webhooks_router)
    app.include_router(admin_orders_router)

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(BusinessException, business_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    @app.get("/")
    async def root():
        return {
            "message": f"{settings.app_name} is running",
            "version": settings.app_version,
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "academy.main:app",
        host="0.0.0.0",
        port=8000,
        reload=default_settings.debug,
        log_level=default_settings.log_level.lower()
    )
