from __future__ import annotations

from pathlib import Path
import uuid

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from tunecraft.core.errors import ConflictError, InsufficientCreditsError, NotFoundError, ValidationError
from tunecraft.ledger.service import ENTRY_CAPTURE, ENTRY_GRANT, ENTRY_REFUND, ENTRY_RESERVE, Ledger
from tunecraft.storage.db import Base, load_models
from tunecraft.storage.models import CreditTransaction, User


def _file_session_factory(path: Path) -> sessionmaker:
    load_models()
    engine = create_engine(f"sqlite+pysqlite:///{path}", future=True)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def test_reserve_deducts_balance_and_journals_entry(session, make_user) -> None:
    user = make_user(credits=50)
    ledger = Ledger(session)

    receipt = ledger.reserve(user.id, 20, "job-1", job_id="job-1")

    assert receipt.entry_type == ENTRY_RESERVE
    assert receipt.balance_after == 30
    assert ledger.get_balance(user.id) == 30

    refreshed = session.get(User, user.id)
    assert refreshed.lifetime_credits_used == 20

    entries = session.scalars(select(CreditTransaction).where(CreditTransaction.user_id == user.id)).all()
    assert [(entry.entry_type, entry.amount) for entry in entries] == [(ENTRY_RESERVE, 20)]


def test_reserve_rejects_when_balance_is_short(session, make_user) -> None:
    user = make_user(credits=5)
    ledger = Ledger(session)

    with pytest.raises(InsufficientCreditsError) as exc_info:
        ledger.reserve(user.id, 10, "job-short")

    assert exc_info.value.required == 10
    assert exc_info.value.available == 5
    assert ledger.get_balance(user.id) == 5
    assert session.scalar(select(CreditTransaction.id)) is None


def test_reserve_rejects_non_positive_amount_and_unknown_user(session, make_user) -> None:
    user = make_user(credits=5)
    ledger = Ledger(session)

    with pytest.raises(ValidationError):
        ledger.reserve(user.id, 0, "job-zero")
    with pytest.raises(NotFoundError):
        ledger.reserve(str(uuid.uuid4()), 1, "job-ghost")


def test_reserve_with_reused_key_is_a_conflict_and_keeps_balance(session, make_user) -> None:
    user = make_user(credits=50)
    ledger = Ledger(session)
    ledger.reserve(user.id, 10, "job-dup")

    with pytest.raises(ConflictError):
        ledger.reserve(user.id, 10, "job-dup")

    assert ledger.get_balance(user.id) == 40


def test_stale_reader_cannot_overdraw_after_concurrent_reserve(tmp_path) -> None:
    factory = _file_session_factory(tmp_path / "ledger.sqlite")
    user_id = str(uuid.uuid4())
    with factory() as seed:
        seed.add(
            User(
                id=user_id,
                username="racer",
                email="racer@tunecraft.test",
                password_hash="x",
                credit_balance=10,
            )
        )
        seed.commit()

    first = factory()
    second = factory()
    try:
        stale_user = first.get(User, user_id)
        assert stale_user.credit_balance == 10

        Ledger(second).reserve(user_id, 10, "job-a")

        with pytest.raises(InsufficientCreditsError):
            Ledger(first).reserve(user_id, 10, "job-b")
    finally:
        first.close()
        second.close()

    with factory() as verify:
        assert verify.get(User, user_id).credit_balance == 0
        reservations = verify.scalars(
            select(CreditTransaction).where(CreditTransaction.entry_type == ENTRY_RESERVE)
        ).all()
        assert [entry.idempotency_key for entry in reservations] == ["job-a"]


def test_refund_is_applied_at_most_once(session, make_user) -> None:
    user = make_user(credits=30)
    ledger = Ledger(session)
    ledger.reserve(user.id, 10, "job-r", job_id="job-r")

    first = ledger.refund(user.id, 10, "job-r", job_id="job-r", reason="generation_failed")
    second = ledger.refund(user.id, 10, "job-r", job_id="job-r", reason="generation_failed")

    assert first is not None
    assert first.balance_after == 30
    assert second is None
    assert ledger.get_balance(user.id) == 30
    assert session.get(User, user.id).lifetime_credits_used == 0

    refunds = session.scalars(
        select(CreditTransaction).where(CreditTransaction.entry_type == ENTRY_REFUND)
    ).all()
    assert len(refunds) == 1
    assert refunds[0].reason == "generation_failed"


def test_refund_of_zero_is_a_no_op(session, make_user) -> None:
    user = make_user(credits=30)
    assert Ledger(session).refund(user.id, 0, "job-zero") is None
    assert Ledger(session).get_balance(user.id) == 30


def test_capture_journals_without_touching_balance(session, make_user) -> None:
    user = make_user(credits=30)
    ledger = Ledger(session)
    ledger.reserve(user.id, 10, "job-c", job_id="job-c")

    receipt = ledger.capture(user.id, 10, "job-c", job_id="job-c")
    duplicate = ledger.capture(user.id, 10, "job-c", job_id="job-c")

    assert receipt is not None
    assert duplicate is None
    assert ledger.get_balance(user.id) == 20
    captures = session.scalars(
        select(CreditTransaction).where(CreditTransaction.entry_type == ENTRY_CAPTURE)
    ).all()
    assert len(captures) == 1


def test_grant_adds_credits_and_lists_newest_first(session, make_user) -> None:
    user = make_user(credits=0)
    ledger = Ledger(session)

    ledger.grant(user.id, 25, "signup_bonus", idempotency_key=f"signup:{user.id}")
    with pytest.raises(ConflictError):
        ledger.grant(user.id, 25, "signup_bonus", idempotency_key=f"signup:{user.id}")
    ledger.reserve(user.id, 5, "job-g")

    assert ledger.get_balance(user.id) == 20
    transactions = ledger.list_transactions(user.id)
    assert {entry.entry_type for entry in transactions} == {ENTRY_GRANT, ENTRY_RESERVE}
    assert len(transactions) == 2
