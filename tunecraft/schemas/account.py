"""Pydantic schemas for account API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class CreditTransactionItem(BaseModel):
    id: str
    entry_type: str
    amount: int
    balance_after: Optional[int]
    job_id: Optional[str]
    reason: Optional[str]
    created_at: datetime


class CreditBalanceResponse(BaseModel):
    credit_balance: int
    lifetime_credits_used: int
    is_pro: bool
    transactions: List[CreditTransactionItem]


class AccountDeleteResponse(BaseModel):
    success: bool = True
    message: str


class PurchaseCreditsRequest(BaseModel):
    amount: int = Field(gt=0, le=10_000)
    payment_method: Optional[str] = Field(default=None, max_length=50)
    transaction_id: Optional[str] = Field(default=None, min_length=1, max_length=120)


class PurchaseCreditsResponse(BaseModel):
    success: bool = True
    message: str
    credits_added: int
    previous_balance: int
    new_balance: int
    transaction_id: str


class UpgradeProRequest(BaseModel):
    plan: str = Field(default="pro", min_length=1, max_length=32)
    duration: Literal["monthly", "yearly", "lifetime"] = "monthly"


class SubscriptionResponse(BaseModel):
    success: bool = True
    message: str
    is_pro: bool
    pro_expires_at: Optional[datetime]
    subscription_plan: str
    subscription_status: str
    bonus_credits_added: int = 0
    credit_balance: int
