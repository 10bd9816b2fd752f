import sys
from typing import Any

import fastapi
import uvicorn

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from src.config import SettingsError, get_settings
from src.logger import get_logger, log_failure
from src.queue import pending_events, shutdown_queue
from src.services.activation import activate_trigger_bot
from src.webhook import router as webhook_router

logger = get_logger()

app = FastAPI(title="Automation Test Build Trigger")
app.state.trigger_bot = None

app.include_router(webhook_router, tags=["webhook"])


@app.get("/", response_class=PlainTextResponse)
def root() -> str:
    return "pong"


@app.get("/health")
def health() -> dict[str, Any]:
    bot = app.state.trigger_bot
    return {
        "status": "active" if bot is not None else "inactive",
        "dry_run": bot.scheduler.dry_run if bot is not None else None,
        "backlog": [key.number for key in bot.scheduler.pending_keys()] if bot is not None else [],
        "pending_events": pending_events(),
        "environment": {
            "python version": sys.version,
            "fastapi version": fastapi.__version__,
            "uvicorn version": uvicorn.__version__,
        },
    }


@app.on_event("startup")
async def _activate_trigger_bot() -> None:
    try:
        settings = get_settings()
    except SettingsError as exc:
        log_failure(logger, "Invalid configuration; build trigger bot stays inactive", exc)
        return
    app.state.trigger_bot = activate_trigger_bot(settings)


@app.on_event("shutdown")
async def _shutdown_trigger_bot() -> None:
    bot = app.state.trigger_bot
    if bot is not None:
        await bot.shutdown()
        app.state.trigger_bot = None
    await shutdown_queue()
