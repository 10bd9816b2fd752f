"""GitHub webhook ingestion for project card events."""

from __future__ import annotations

import json
import time
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from src.config import Settings
from src.dependencies import settings_dependency, trigger_bot_dependency
from src.logger import get_logger, log_failure, log_with_context
from src.queue import enqueue_card_event
from src.queue.models import CardEvent
from src.services.activation import TriggerBot
from src.services.card_router import SUBSCRIBED_ACTIONS
from src.utils.security import is_valid_signature

router = APIRouter()

logger = get_logger()

CARD_EVENT = "project_card"
DELIVERY_TTL_SECONDS = 60 * 60  # retain delivery IDs for one hour
_delivery_cache: Dict[str, float] = {}


class IgnoreEventError(RuntimeError):
    """Raised when a webhook event should be acknowledged but not processed."""


def _prune_delivery_cache(now: float) -> None:
    expiry_threshold = now - DELIVERY_TTL_SECONDS
    expired = [key for key, timestamp in _delivery_cache.items() if timestamp < expiry_threshold]
    for key in expired:
        _delivery_cache.pop(key, None)


def _is_duplicate(delivery_id: str, now: float) -> bool:
    _prune_delivery_cache(now)
    return delivery_id in _delivery_cache


def reset_delivery_cache() -> None:
    """Forget seen deliveries (primarily for tests)."""
    _delivery_cache.clear()


def build_card_event(event: str, delivery_id: str | None, payload: Dict[str, Any]) -> CardEvent:
    if event != CARD_EVENT:
        raise IgnoreEventError(f"Event '{event}' is not handled.")

    action = payload.get("action")
    if action not in SUBSCRIBED_ACTIONS:
        raise IgnoreEventError(f"Project card action '{action}' not actionable.")

    installation = payload.get("installation") or {}
    card = payload.get("project_card") or {}

    if not installation.get("id"):
        raise ValueError("Project card event missing installation id.")
    if not card.get("id") or not card.get("column_id"):
        raise ValueError("Project card payload missing card or column id.")

    return CardEvent(
        delivery_id=delivery_id,
        action=action,
        installation_id=installation["id"],
        card_id=card["id"],
        column_id=card["column_id"],
        content_url=card.get("content_url"),
        note=card.get("note"),
    )


@router.post("/webhook", summary="Receive GitHub webhooks")
async def receive_webhook(
    request: Request,
    settings: Settings = Depends(settings_dependency),
    bot: TriggerBot | None = Depends(trigger_bot_dependency),
) -> Dict[str, str]:
    """Verify the delivery, then queue project card events for routing."""

    delivery_id = request.headers.get("X-GitHub-Delivery")
    event = request.headers.get("X-GitHub-Event")

    if not delivery_id:
        log_failure(logger, "Missing X-GitHub-Delivery header", event_type=event)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing X-GitHub-Delivery header")
    if not event:
        log_failure(logger, "Missing X-GitHub-Event header", delivery_id=delivery_id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing X-GitHub-Event header")

    ctx_logger = log_with_context(logger, delivery_id=delivery_id, event_type=event)
    raw_body = await request.body()

    if settings.github_webhook_secret:
        signature = request.headers.get("X-Hub-Signature-256")
        if not is_valid_signature(settings.github_webhook_secret, raw_body, signature):
            log_failure(logger, "Webhook signature verification failed", delivery_id=delivery_id, event_type=event)
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")
    else:
        ctx_logger.trace("GITHUB_WEBHOOK_SECRET not set; skipping signature verification")

    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        log_failure(logger, "Invalid JSON payload", exc, delivery_id=delivery_id, event_type=event)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc

    if bot is None:
        ctx_logger.trace("Build trigger bot inactive; ignoring delivery")
        return {"status": "ignored", "reason": "inactive"}

    now = time.time()
    if _is_duplicate(delivery_id, now):
        ctx_logger.info("Duplicate delivery ignored")
        return {"status": "ignored", "reason": "duplicate"}

    try:
        card_event = build_card_event(event, delivery_id, payload)
    except IgnoreEventError as exc:
        ctx_logger.trace(f"Webhook ignored: {exc}")
        return {"status": "ignored", "reason": str(exc)}
    except (ValueError, ValidationError) as exc:
        log_failure(logger, f"Invalid payload structure: {exc}", exc, delivery_id=delivery_id, event_type=event)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    await enqueue_card_event(card_event)
    _delivery_cache[delivery_id] = now
    ctx_logger.debug(f"Queued card {card_event.card_id} ({card_event.action})")
    return {"status": "accepted"}
