"""FastAPI dependency factories."""

from __future__ import annotations

from fastapi import HTTPException, Request

from src.config import Settings, SettingsError, get_settings
from src.logger import get_logger
from src.services.activation import TriggerBot

logger = get_logger()


def settings_dependency() -> Settings:
    """Resolve application settings, surfacing configuration errors via HTTPException."""

    try:
        return get_settings()
    except SettingsError as exc:
        logger.error(f"Failed to load settings: {exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def trigger_bot_dependency(request: Request) -> TriggerBot | None:
    """Return the active bot, or None when startup left it inert."""

    return getattr(request.app.state, "trigger_bot", None)
