"""Public interface for the Bubble data API adapter."""

from __future__ import annotations

from .client import BubbleRecordSource, modified_since_constraint
from .schema import BubbleListResponse, BubblePage, BubbleRecordResponse

__all__ = [
    "BubbleListResponse",
    "BubblePage",
    "BubbleRecordResponse",
    "BubbleRecordSource",
    "modified_since_constraint",
]
