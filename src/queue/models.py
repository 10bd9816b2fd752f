"""Data models for project card events."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field


class CardEvent(BaseModel):
    """A ``project_card`` webhook reduced to what the router needs."""

    delivery_id: str | None = None
    action: Literal["created", "moved"]
    installation_id: int
    card_id: int
    column_id: int
    content_url: str | None = None
    note: str | None = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_note(self) -> bool:
        return self.content_url is None or bool(self.note)
