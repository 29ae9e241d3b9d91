from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from tunecraft.account.service import (
    PRO_BONUS_CREDITS,
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_CANCELED,
    cancel_subscription,
    pro_expiry,
    purchase_credits,
    upgrade_to_pro,
)
from tunecraft.auth.service import is_pro_active
from tunecraft.core.errors import ConflictError, ValidationError
from tunecraft.ledger.service import ENTRY_GRANT, Ledger
from tunecraft.storage.models import CreditTransaction


def _grants(session, user_id: str) -> list[CreditTransaction]:
    return list(
        session.scalars(
            select(CreditTransaction).where(
                CreditTransaction.user_id == user_id,
                CreditTransaction.entry_type == ENTRY_GRANT,
            )
        ).all()
    )


def test_purchase_adds_journaled_credits(session, make_user) -> None:
    user = make_user(credits=25)

    result = purchase_credits(session, user.id, 500, payment_method="card", transaction_id="pay_123")

    assert result.previous_balance == 25
    assert result.new_balance == 525
    assert result.transaction_id == "pay_123"
    assert Ledger(session).get_balance(user.id) == 525
    [grant] = _grants(session, user.id)
    assert grant.reason == "credit_purchase"
    assert grant.idempotency_key == "purchase:pay_123"


def test_purchase_rejects_replayed_payment_and_bad_amounts(session, make_user) -> None:
    user = make_user(credits=0)
    purchase_credits(session, user.id, 100, transaction_id="pay_once")

    with pytest.raises(ConflictError):
        purchase_credits(session, user.id, 100, transaction_id="pay_once")
    with pytest.raises(ValidationError):
        purchase_credits(session, user.id, 0)
    with pytest.raises(ValidationError):
        purchase_credits(session, user.id, 10_001)

    assert Ledger(session).get_balance(user.id) == 100


def test_pro_expiry_follows_duration() -> None:
    started = datetime(2026, 1, 31, 12, 0, tzinfo=timezone.utc)

    assert pro_expiry("monthly", now=started) == datetime(2026, 2, 28, 12, 0, tzinfo=timezone.utc)
    assert pro_expiry("yearly", now=started) == datetime(2027, 1, 31, 12, 0, tzinfo=timezone.utc)
    assert pro_expiry("lifetime", now=started) is None
    with pytest.raises(ValidationError):
        pro_expiry("weekly", now=started)


def test_upgrade_sets_subscription_and_grants_bonus(session, make_user) -> None:
    user = make_user(credits=10)

    result = upgrade_to_pro(session, user.id, plan="Pro", duration="yearly")

    assert result.bonus_credits == PRO_BONUS_CREDITS
    assert result.new_balance == 10 + PRO_BONUS_CREDITS
    session.refresh(user)
    assert user.is_pro is True
    assert user.subscription_plan == "pro"
    assert user.subscription_status == SUBSCRIPTION_ACTIVE
    assert is_pro_active(user)
    assert user.pro_expires_at is not None
    [bonus] = _grants(session, user.id)
    assert bonus.reason == "pro_upgrade_bonus"

    with pytest.raises(ValidationError):
        upgrade_to_pro(session, user.id)
    assert Ledger(session).get_balance(user.id) == 10 + PRO_BONUS_CREDITS


def test_expired_pro_can_upgrade_again(session, make_user) -> None:
    user = make_user(credits=0)
    user.is_pro = True
    user.pro_expires_at = datetime.now(timezone.utc) - timedelta(days=1)
    session.commit()

    result = upgrade_to_pro(session, user.id, duration="lifetime")

    assert result.user.pro_expires_at is None
    assert is_pro_active(result.user)


def test_cancel_keeps_pro_until_expiry(session, make_user) -> None:
    user = make_user(credits=0)
    with pytest.raises(ValidationError):
        cancel_subscription(session, user.id)

    upgrade_to_pro(session, user.id, duration="monthly")
    canceled = cancel_subscription(session, user.id)

    assert canceled.subscription_status == SUBSCRIPTION_CANCELED
    assert canceled.is_pro is True
    assert is_pro_active(canceled)
