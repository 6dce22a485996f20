from fastapi import FastAPI

from trulybot.config import LOG_LEVEL
from trulybot.db import engine
from trulybot.errors import register_exception_handlers
from trulybot.logging_config import get_logger, setup_logging
from trulybot.middleware import (
    ErrorEnvelopeMiddleware,
    RateLimitHeadersMiddleware,
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
    TimingAccessLogMiddleware,
)
from trulybot.models import Base
from trulybot.rate_limit import build_rate_limiter
from trulybot.routes.auth import router as auth_router
from trulybot.routes.ops import router as ops_router
from trulybot.routes.payments import router as payments_router
from trulybot.routes.subscription import router as subscription_router
from trulybot.routes.webhooks import router as webhooks_router
from trulybot.services.gateway import default_gateway_factory

logger = get_logger("trulybot")


def create_app(rate_limiter=None, gateway_factory=None) -> FastAPI:
    setup_logging(LOG_LEVEL)
    app = FastAPI(title="trulybot-billing")
    register_exception_handlers(app)

    app.state.rate_limiter = rate_limiter or build_rate_limiter()
    app.state.gateway_factory = gateway_factory or default_gateway_factory

    @app.on_event("startup")
    def on_startup():
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables ready")

    app.include_router(webhooks_router)
    app.include_router(payments_router)
    app.include_router(subscription_router)
    app.include_router(auth_router)
    app.include_router(ops_router)

    # Last added runs first: RequestID wraps everything else.
    app.add_middleware(ErrorEnvelopeMiddleware)
    app.add_middleware(RateLimitHeadersMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(TimingAccessLogMiddleware)
    app.add_middleware(RequestIDMiddleware)
    return app


app = create_app()
