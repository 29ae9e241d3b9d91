"""User registration, credential checks with lockout, and account deactivation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional
import uuid

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from tunecraft.core.config import get_settings
from tunecraft.core.errors import AccountLockedError, AuthenticationError, ConflictError, NotFoundError
from tunecraft.core.logger import get_logger
from tunecraft.ledger.service import Ledger
from tunecraft.storage.models import User
from tunecraft.storage.security import hash_password, scrambled_identifier, verify_password
from tunecraft.workspaces.service import ensure_default_workspace


logger = get_logger("tunecraft.auth")

SIGNUP_GRANT_REASON = "signup_bonus"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_dt(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_locked(user: User, *, now: Optional[datetime] = None) -> bool:
    lock_until = _normalize_dt(user.lock_until)
    return lock_until is not None and lock_until > (now or _now_utc())


def is_pro_active(user: User, *, now: Optional[datetime] = None) -> bool:
    if not user.is_pro:
        return False
    expires_at = _normalize_dt(user.pro_expires_at)
    return expires_at is None or expires_at > (now or _now_utc())


def register_user(session: Session, *, username: str, email: str, password: str) -> User:
    normalized_email = email.strip().lower()
    normalized_username = username.strip()
    existing = session.scalar(
        select(User).where(
            or_(
                func.lower(User.email) == normalized_email,
                func.lower(User.username) == normalized_username.lower(),
            )
        )
    )
    if existing is not None:
        field = "email" if existing.email.lower() == normalized_email else "username"
        raise ConflictError(f"User with this {field} already exists", details={"field": field})

    user = User(
        id=str(uuid.uuid4()),
        username=normalized_username,
        email=normalized_email,
        password_hash=hash_password(password),
        credit_balance=0,
    )
    signup_credits = get_settings().signup_credits
    try:
        session.add(user)
        session.flush()
        if signup_credits > 0:
            Ledger(session).grant(
                user.id,
                signup_credits,
                SIGNUP_GRANT_REASON,
                idempotency_key=f"signup:{user.id}",
                commit=False,
            )
        ensure_default_workspace(session, user.id, commit=False)
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(user)

    logger.info("user_registered", user_id=user.id, signup_credits=signup_credits)
    return user


def authenticate_user(session: Session, *, email: str, password: str) -> User:
    settings = get_settings()
    user = session.scalar(
        select(User).where(func.lower(User.email) == email.strip().lower(), User.is_active.is_(True))
    )
    if user is None:
        raise AuthenticationError("Invalid credentials")

    now = _now_utc()
    if is_locked(user, now=now):
        raise AccountLockedError(
            "Account is temporarily locked due to too many failed login attempts",
            details={"lock_until": _normalize_dt(user.lock_until).isoformat()},
        )

    if not verify_password(password, user.password_hash):
        if user.lock_until is not None:
            user.login_attempts = 1
            user.lock_until = None
        else:
            user.login_attempts = (user.login_attempts or 0) + 1
        if user.login_attempts >= settings.login_max_attempts:
            user.lock_until = now + timedelta(minutes=settings.login_lock_minutes)
            logger.warning("user_locked", user_id=user.id, attempts=user.login_attempts)
        session.commit()
        raise AuthenticationError("Invalid credentials")

    user.login_attempts = 0
    user.lock_until = None
    user.last_login_at = now
    session.commit()
    return user


def get_active_user(session: Session, user_id: str) -> User:
    user = session.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFoundError("User not found", details={"user_id": user_id})
    return user


def deactivate_account(session: Session, user_id: str) -> User:
    """Soft delete: keep the row for job and workspace references, free the handle and email."""

    user = get_active_user(session, user_id)
    placeholder = scrambled_identifier("deleted")
    user.username = placeholder
    user.email = f"{placeholder}@deleted.invalid"
    user.is_active = False
    user.deactivated_at = _now_utc()
    user.login_attempts = 0
    user.lock_until = None
    session.commit()

    logger.info("user_deactivated", user_id=user.id)
    return user
