import logging
from contextlib import asynccontextmanager

import redis.asyncio as redis
import sentry_sdk
from fastapi import FastAPI
from sqlalchemy import text

from chatcore.config import settings
from chatcore.database import async_session, engine
from chatcore.logging_config import setup_logging
from chatcore.services.sweeper import Sweeper

logger = logging.getLogger(__name__)

# Initialize Sentry
if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=0.2 if settings.ENVIRONMENT == "production" else 1.0,
        profiles_sample_rate=0.1,
        send_default_pii=False,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL)

    # Startup: verify DB connection and connect Redis
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))

    app.state.redis = redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
    )
    try:
        await app.state.redis.ping()
    except Exception as exc:
        # Rate limiting and realtime notifications are skipped without Redis
        logger.warning("Redis unavailable at startup: %s", exc)
        await app.state.redis.close()
        app.state.redis = None

    app.state.sweeper = None
    if settings.SWEEPER_ENABLED:
        app.state.sweeper = Sweeper(async_session)
        app.state.sweeper.start()

    yield

    # Shutdown
    if app.state.sweeper is not None:
        await app.state.sweeper.stop()
    if app.state.redis is not None:
        await app.state.redis.close()
    await engine.dispose()


app = FastAPI(
    title="chatcore",
    version="0.1.0",
    lifespan=lifespan,
)

# Middleware
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402

from chatcore.middleware.rate_limit import RateLimitMiddleware  # noqa: E402

app.add_middleware(RateLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

from chatcore.middleware.error_handler import register_error_handlers  # noqa: E402

register_error_handlers(app)

# Routers
from chatcore.routers.conversations import router as conversations_router  # noqa: E402
from chatcore.routers.friends import router as friends_router  # noqa: E402
from chatcore.routers.messages import router as messages_router  # noqa: E402
from chatcore.routers.notifications import router as notifications_router  # noqa: E402

app.include_router(friends_router)
app.include_router(conversations_router)
app.include_router(messages_router)
app.include_router(notifications_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
