# main.py
import logging
import os

if os.getenv("DEBUGPY", "0") == "1":
    import debugpy
    debugpy.listen(("0.0.0.0", 5678))

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from config.logging_config import configure_logging
from config.settings import Settings, get_settings
from middleware.rate_limit import limiter
from middleware.request_logging import RequestLoggingMiddleware
from routers.investment_routes import prod_router, sandbox_router
from services.cache.result_cache import ResultCache

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging()

    app = FastAPI(title="Investment aggregation service")

    # One cache per process, shared by every request and credential.
    app.state.result_cache = ResultCache(default_ttl_sec=settings.cache_default_ttl_sec)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(prod_router, prefix="/api/investment/prod", tags=["prod"])
    app.include_router(sandbox_router, prefix="/api/investment/sandbox", tags=["sandbox"])

    @app.get("/health")
    async def health():
        return {"status": "ok", "cache_entries": len(app.state.result_cache)}

    logger.info("app created cache_ttl_sec=%s", settings.cache_default_ttl_sec)
    return app


app = create_app()
