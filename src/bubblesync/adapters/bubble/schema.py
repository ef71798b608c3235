"""Pydantic models describing the Bubble data API payloads."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class BubbleBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class BubblePage(BubbleBaseModel):
    cursor: int = 0
    results: list[dict[str, Any]] = Field(default_factory=list[dict[str, Any]])
    count: int = 0
    remaining: int = 0


class BubbleListResponse(BubbleBaseModel):
    """``GET /obj/{type}`` envelope."""

    response: BubblePage


class BubbleRecordResponse(BubbleBaseModel):
    """``GET /obj/{type}/{id}`` envelope; the record keeps its human-readable keys."""

    response: dict[str, Any]


class BubbleErrorBody(BubbleBaseModel):
    status: str | None = None
    message: str | None = None


class BubbleErrorResponse(BubbleBaseModel):
    body: BubbleErrorBody | None = None
    status: str | None = None
    message: str | None = None

    @property
    def detail(self) -> str | None:
        if self.body is not None and self.body.message:
            return self.body.message
        return self.message
