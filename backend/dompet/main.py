import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from telegram import Bot

from .config import get_settings
from .db import Base, engine
from .errors import RecordStoreError
from .migrations import run_migrations
from .routers import auth, data, telegram
from .services import build_services
from .transport import TelegramTransport

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(title="Dompet API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix=settings.api_prefix)
app.include_router(data.router, prefix=settings.api_prefix)
app.include_router(telegram.router, prefix=settings.api_prefix)


@app.exception_handler(RecordStoreError)
async def record_store_error_handler(request: Request, exc: RecordStoreError) -> JSONResponse:
    logger.error("Record store failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable."})


@app.on_event("startup")
async def on_startup() -> None:
    """Ensure database tables exist and wire the chat services."""
    Base.metadata.create_all(bind=engine)
    run_migrations(engine)

    transport = None
    if settings.telegram_bot_token:
        bot = Bot(settings.telegram_bot_token)
        await bot.initialize()
        transport = TelegramTransport(bot)
        if settings.webhook_endpoint:
            await bot.set_webhook(settings.webhook_endpoint, secret_token=settings.telegram_webhook_secret)
            logger.info("Telegram webhook registered at %s", settings.webhook_endpoint)
            if not settings.telegram_webhook_secret:
                logger.warning("TELEGRAM_WEBHOOK_SECRET is not set; webhook calls are not authenticated.")
    else:
        logger.warning("Telegram bot token is not configured; chat delivery is disabled.")
    app.state.services = build_services(settings, transport=transport)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    services = getattr(app.state, "services", None)
    if services is not None and isinstance(services.transport, TelegramTransport):
        await services.transport.bot.shutdown()


@app.get("/")
def health_check() -> dict[str, str]:
    return {"status": "ok"}
