"""Account billing operations: credit purchases and the Pro subscription lifecycle."""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from tunecraft.auth.service import get_active_user, is_pro_active
from tunecraft.core.errors import ValidationError
from tunecraft.core.logger import get_logger
from tunecraft.ledger.service import CreditReceipt, Ledger
from tunecraft.storage.models import User


logger = get_logger("tunecraft.account")

PURCHASE_GRANT_REASON = "credit_purchase"
PRO_BONUS_GRANT_REASON = "pro_upgrade_bonus"
MAX_PURCHASE_CREDITS = 10_000
PRO_BONUS_CREDITS = 100

DURATION_MONTHLY = "monthly"
DURATION_YEARLY = "yearly"
DURATION_LIFETIME = "lifetime"
PRO_DURATIONS = (DURATION_MONTHLY, DURATION_YEARLY, DURATION_LIFETIME)

SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_CANCELED = "canceled"


@dataclass(frozen=True)
class PurchaseResult:
    credits_added: int
    previous_balance: int
    new_balance: int
    transaction_id: str


@dataclass(frozen=True)
class UpgradeResult:
    user: User
    bonus_credits: int
    new_balance: int


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def pro_expiry(duration: str, *, now: Optional[datetime] = None) -> Optional[datetime]:
    """Expiry for a new Pro period; ``None`` means it never expires."""

    started = now or _now_utc()
    if duration == DURATION_MONTHLY:
        return _add_months(started, 1)
    if duration == DURATION_YEARLY:
        return _add_months(started, 12)
    if duration == DURATION_LIFETIME:
        return None
    raise ValidationError("Invalid duration", details={"duration": duration, "allowed": list(PRO_DURATIONS)})


def purchase_credits(
    session: Session,
    user_id: str,
    amount: int,
    *,
    payment_method: Optional[str] = None,
    transaction_id: Optional[str] = None,
) -> PurchaseResult:
    if amount <= 0:
        raise ValidationError("Invalid credit amount", details={"amount": amount})
    if amount > MAX_PURCHASE_CREDITS:
        raise ValidationError(
            f"Maximum {MAX_PURCHASE_CREDITS:,} credits can be purchased at once",
            details={"amount": amount},
        )

    user = get_active_user(session, user_id)
    previous_balance = user.credit_balance
    # A repeated payment transaction id is rejected by the ledger's unique journal key.
    receipt: CreditReceipt = Ledger(session).grant(
        user.id,
        amount,
        PURCHASE_GRANT_REASON,
        idempotency_key=f"purchase:{transaction_id}" if transaction_id else None,
    )
    logger.info(
        "credits_purchased",
        user_id=user.id,
        amount=amount,
        payment_method=payment_method,
        transaction_id=transaction_id,
        balance_after=receipt.balance_after,
    )
    return PurchaseResult(
        credits_added=amount,
        previous_balance=previous_balance,
        new_balance=int(receipt.balance_after or 0),
        transaction_id=transaction_id or receipt.transaction_id,
    )


def upgrade_to_pro(
    session: Session,
    user_id: str,
    *,
    plan: str = "pro",
    duration: str = DURATION_MONTHLY,
    now: Optional[datetime] = None,
) -> UpgradeResult:
    """Activate Pro and grant the upgrade bonus in one transaction."""

    user = get_active_user(session, user_id)
    started = now or _now_utc()
    if is_pro_active(user, now=started):
        raise ValidationError("User is already a Pro member")
    expires_at = pro_expiry(duration, now=started)
    cleaned_plan = (plan or "").strip().lower()
    if not cleaned_plan:
        raise ValidationError("Plan is required")

    try:
        user.is_pro = True
        user.pro_expires_at = expires_at
        user.subscription_plan = cleaned_plan
        user.subscription_status = SUBSCRIPTION_ACTIVE
        session.flush()
        receipt = Ledger(session).grant(
            user.id,
            PRO_BONUS_CREDITS,
            PRO_BONUS_GRANT_REASON,
            commit=False,
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(user)

    logger.info(
        "user_upgraded_to_pro",
        user_id=user.id,
        plan=cleaned_plan,
        duration=duration,
        pro_expires_at=expires_at.isoformat() if expires_at else None,
    )
    return UpgradeResult(user=user, bonus_credits=PRO_BONUS_CREDITS, new_balance=int(receipt.balance_after or 0))


def cancel_subscription(session: Session, user_id: str) -> User:
    """Stop renewal; Pro benefits stay until ``pro_expires_at``."""

    user = get_active_user(session, user_id)
    if not user.is_pro:
        raise ValidationError("User does not have an active subscription")
    user.subscription_status = SUBSCRIPTION_CANCELED
    session.commit()
    logger.info("subscription_canceled", user_id=user.id, plan=user.subscription_plan)
    return user
