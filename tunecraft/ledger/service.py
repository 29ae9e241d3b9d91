"""Credit ledger: atomic reservations, at-most-once refunds and grants."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import uuid

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tunecraft.core.errors import ConflictError, InsufficientCreditsError, NotFoundError, ValidationError
from tunecraft.core.logger import get_logger
from tunecraft.core.metrics import record_credits
from tunecraft.storage.models import CreditTransaction, User


logger = get_logger("tunecraft.ledger")

ENTRY_RESERVE = "reserve"
ENTRY_REFUND = "refund"
ENTRY_CAPTURE = "capture"
ENTRY_GRANT = "grant"


@dataclass(frozen=True)
class CreditReceipt:
    transaction_id: str
    user_id: str
    entry_type: str
    amount: int
    balance_after: Optional[int]
    idempotency_key: str


def _require_positive(amount: int) -> None:
    if amount <= 0:
        raise ValidationError("Credit amount must be positive.", details={"amount": amount})


class Ledger:
    """Credit balance mutations for one database session.

    Every mutation commits its own transaction, except ``refund(commit=False)``,
    which joins the caller's transaction so a status change and its refund land
    together or not at all.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def get_balance(self, user_id: str) -> int:
        balance = self.session.scalar(select(User.credit_balance).where(User.id == user_id))
        if balance is None:
            raise NotFoundError("User not found", details={"user_id": user_id})
        return int(balance)

    def _current_balance(self, user_id: str) -> Optional[int]:
        return self.session.scalar(select(User.credit_balance).where(User.id == user_id))

    def _journal(
        self,
        *,
        user_id: str,
        entry_type: str,
        amount: int,
        idempotency_key: str,
        job_id: Optional[str],
        reason: Optional[str],
        balance_after: Optional[int],
    ) -> CreditTransaction:
        entry = CreditTransaction(
            id=str(uuid.uuid4()),
            user_id=user_id,
            job_id=job_id,
            entry_type=entry_type,
            amount=amount,
            idempotency_key=idempotency_key,
            reason=reason,
            balance_after=balance_after,
        )
        self.session.add(entry)
        return entry

    def _has_entry(self, idempotency_key: str, entry_type: str) -> bool:
        existing = self.session.scalar(
            select(CreditTransaction.id).where(
                CreditTransaction.idempotency_key == idempotency_key,
                CreditTransaction.entry_type == entry_type,
            )
        )
        return existing is not None

    def reserve(
        self,
        user_id: str,
        amount: int,
        idempotency_key: str,
        *,
        job_id: Optional[str] = None,
    ) -> CreditReceipt:
        """Deduct credits with a single conditional update; never reads then writes."""

        _require_positive(amount)
        result = self.session.execute(
            update(User)
            .where(User.id == user_id, User.credit_balance >= amount)
            .values(
                credit_balance=User.credit_balance - amount,
                lifetime_credits_used=User.lifetime_credits_used + amount,
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            self.session.rollback()
            available = self._current_balance(user_id)
            if available is None:
                raise NotFoundError("User not found", details={"user_id": user_id})
            logger.info(
                "credits_reserve_rejected",
                user_id=user_id,
                required=amount,
                available=available,
            )
            raise InsufficientCreditsError(required=amount, available=int(available))

        balance_after = self._current_balance(user_id)
        entry = self._journal(
            user_id=user_id,
            entry_type=ENTRY_RESERVE,
            amount=amount,
            idempotency_key=idempotency_key,
            job_id=job_id,
            reason=None,
            balance_after=balance_after,
        )
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError(
                "Credits were already reserved for this request.",
                details={"idempotency_key": idempotency_key},
            ) from exc

        record_credits(operation=ENTRY_RESERVE, amount=amount)
        logger.info(
            "credits_reserved",
            user_id=user_id,
            amount=amount,
            balance_after=balance_after,
            idempotency_key=idempotency_key,
        )
        return CreditReceipt(
            transaction_id=entry.id,
            user_id=user_id,
            entry_type=ENTRY_RESERVE,
            amount=amount,
            balance_after=balance_after,
            idempotency_key=idempotency_key,
        )

    def refund(
        self,
        user_id: str,
        amount: int,
        idempotency_key: str,
        *,
        job_id: Optional[str] = None,
        reason: Optional[str] = None,
        commit: bool = True,
    ) -> Optional[CreditReceipt]:
        """Return reserved credits once per key; a repeated call is a no-op returning None.

        With ``commit=False`` nothing is committed or rolled back here: the journal row
        and balance increment stay pending in the caller's transaction, and a
        concurrent duplicate surfaces as ``IntegrityError`` for the caller to roll back.
        """

        if amount <= 0:
            return None
        if self._has_entry(idempotency_key, ENTRY_REFUND):
            logger.info("credits_refund_duplicate", user_id=user_id, idempotency_key=idempotency_key)
            return None

        entry = self._journal(
            user_id=user_id,
            entry_type=ENTRY_REFUND,
            amount=amount,
            idempotency_key=idempotency_key,
            job_id=job_id,
            reason=reason,
            balance_after=None,
        )
        try:
            self.session.flush()
        except IntegrityError:
            if not commit:
                raise
            self.session.rollback()
            logger.info("credits_refund_duplicate", user_id=user_id, idempotency_key=idempotency_key)
            return None

        result = self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                credit_balance=User.credit_balance + amount,
                lifetime_credits_used=User.lifetime_credits_used - amount,
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            if commit:
                self.session.rollback()
            raise NotFoundError("User not found", details={"user_id": user_id})

        balance_after = self._current_balance(user_id)
        entry.balance_after = balance_after
        if commit:
            try:
                self.session.commit()
            except IntegrityError:
                self.session.rollback()
                logger.info("credits_refund_duplicate", user_id=user_id, idempotency_key=idempotency_key)
                return None

        record_credits(operation=ENTRY_REFUND, amount=amount)
        logger.info(
            "credits_refunded",
            user_id=user_id,
            amount=amount,
            balance_after=balance_after,
            idempotency_key=idempotency_key,
            reason=reason,
        )
        return CreditReceipt(
            transaction_id=entry.id,
            user_id=user_id,
            entry_type=ENTRY_REFUND,
            amount=amount,
            balance_after=balance_after,
            idempotency_key=idempotency_key,
        )

    def capture(
        self,
        user_id: str,
        amount: int,
        idempotency_key: str,
        *,
        job_id: Optional[str] = None,
    ) -> Optional[CreditReceipt]:
        """Mark a reservation as final. Journal only; the balance was already deducted."""

        if amount <= 0 or self._has_entry(idempotency_key, ENTRY_CAPTURE):
            return None

        entry = self._journal(
            user_id=user_id,
            entry_type=ENTRY_CAPTURE,
            amount=amount,
            idempotency_key=idempotency_key,
            job_id=job_id,
            reason=None,
            balance_after=None,
        )
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            return None

        record_credits(operation=ENTRY_CAPTURE, amount=amount)
        return CreditReceipt(
            transaction_id=entry.id,
            user_id=user_id,
            entry_type=ENTRY_CAPTURE,
            amount=amount,
            balance_after=None,
            idempotency_key=idempotency_key,
        )

    def grant(
        self,
        user_id: str,
        amount: int,
        reason: str,
        *,
        idempotency_key: Optional[str] = None,
        commit: bool = True,
    ) -> CreditReceipt:
        _require_positive(amount)
        key = idempotency_key or f"grant:{uuid.uuid4()}"

        result = self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(credit_balance=User.credit_balance + amount)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            if commit:
                self.session.rollback()
            raise NotFoundError("User not found", details={"user_id": user_id})

        balance_after = self._current_balance(user_id)
        entry = self._journal(
            user_id=user_id,
            entry_type=ENTRY_GRANT,
            amount=amount,
            idempotency_key=key,
            job_id=None,
            reason=reason,
            balance_after=balance_after,
        )
        try:
            if commit:
                self.session.commit()
            else:
                self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("Credit grant already applied.", details={"idempotency_key": key}) from exc

        record_credits(operation=ENTRY_GRANT, amount=amount)
        logger.info("credits_granted", user_id=user_id, amount=amount, reason=reason, balance_after=balance_after)
        return CreditReceipt(
            transaction_id=entry.id,
            user_id=user_id,
            entry_type=ENTRY_GRANT,
            amount=amount,
            balance_after=balance_after,
            idempotency_key=key,
        )

    def list_transactions(self, user_id: str, *, limit: int = 50) -> list[CreditTransaction]:
        statement = (
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.created_at.desc())
            .limit(limit)
        )
        return list(self.session.scalars(statement).all())
