"""Account API routes: credit balance, purchases, Pro subscription and account deletion."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tunecraft.account import service as account_service
from tunecraft.auth.dependencies import require_auth_context
from tunecraft.auth.jwt import AuthContext
from tunecraft.auth.service import deactivate_account, get_active_user, is_pro_active
from tunecraft.jobs.dependencies import get_ledger
from tunecraft.ledger.service import Ledger
from tunecraft.schemas.account import (
    AccountDeleteResponse,
    CreditBalanceResponse,
    CreditTransactionItem,
    PurchaseCreditsRequest,
    PurchaseCreditsResponse,
    SubscriptionResponse,
    UpgradeProRequest,
)
from tunecraft.storage.db import get_session
from tunecraft.storage.models import User


router = APIRouter(prefix="/account", tags=["account"])


@router.get("/credits", response_model=CreditBalanceResponse)
def get_credits(
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
    ledger: Ledger = Depends(get_ledger),
) -> CreditBalanceResponse:
    user = get_active_user(session, auth.user_id)
    transactions = ledger.list_transactions(user.id)
    return CreditBalanceResponse(
        credit_balance=ledger.get_balance(user.id),
        lifetime_credits_used=user.lifetime_credits_used,
        is_pro=is_pro_active(user),
        transactions=[
            CreditTransactionItem(
                id=entry.id,
                entry_type=entry.entry_type,
                amount=entry.amount,
                balance_after=entry.balance_after,
                job_id=entry.job_id,
                reason=entry.reason,
                created_at=entry.created_at,
            )
            for entry in transactions
        ],
    )


@router.delete("", response_model=AccountDeleteResponse)
def delete_account(
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> AccountDeleteResponse:
    deactivate_account(session, auth.user_id)
    return AccountDeleteResponse(message="Account deleted successfully")


def _subscription_response(user: User, *, message: str, bonus_credits: int = 0) -> SubscriptionResponse:
    return SubscriptionResponse(
        message=message,
        is_pro=is_pro_active(user),
        pro_expires_at=user.pro_expires_at,
        subscription_plan=user.subscription_plan,
        subscription_status=user.subscription_status,
        bonus_credits_added=bonus_credits,
        credit_balance=user.credit_balance,
    )


@router.post("/purchase-credits", response_model=PurchaseCreditsResponse)
def post_purchase_credits(
    payload: PurchaseCreditsRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> PurchaseCreditsResponse:
    result = account_service.purchase_credits(
        session,
        auth.user_id,
        payload.amount,
        payment_method=payload.payment_method,
        transaction_id=payload.transaction_id,
    )
    return PurchaseCreditsResponse(
        message=f"Successfully added {result.credits_added} credits to your account",
        credits_added=result.credits_added,
        previous_balance=result.previous_balance,
        new_balance=result.new_balance,
        transaction_id=result.transaction_id,
    )


@router.post("/upgrade-pro", response_model=SubscriptionResponse)
def post_upgrade_pro(
    payload: UpgradeProRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> SubscriptionResponse:
    result = account_service.upgrade_to_pro(session, auth.user_id, plan=payload.plan, duration=payload.duration)
    return _subscription_response(
        result.user,
        message=f"Successfully upgraded to {result.user.subscription_plan.upper()}!",
        bonus_credits=result.bonus_credits,
    )


@router.post("/cancel-subscription", response_model=SubscriptionResponse)
def post_cancel_subscription(
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> SubscriptionResponse:
    user = account_service.cancel_subscription(session, auth.user_id)
    return _subscription_response(
        user,
        message="Subscription canceled. Pro benefits remain active until expiration.",
    )
