"""Pydantic schemas for provider callback acknowledgements."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class ProviderWebhookResponse(BaseModel):
    success: bool = True
    message: str
    shape: Optional[str] = None
    quarantined: bool = False
    reason: Optional[str] = None
    received: int = 0
    applied: int = 0
    ignored: int = 0
    unknown: int = 0
    errors: int = 0
    rejected: int = 0
