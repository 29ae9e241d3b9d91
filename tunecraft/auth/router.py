"""Authentication API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from tunecraft.auth.dependencies import require_auth_context
from tunecraft.auth.jwt import AuthContext, create_access_token
from tunecraft.auth.service import authenticate_user, get_active_user, is_pro_active, register_user
from tunecraft.schemas.auth import LoginRequest, RegisterRequest, TokenResponse, UserProfile
from tunecraft.storage.db import get_session
from tunecraft.storage.models import User
from tunecraft.workspaces.service import get_default_workspace


router = APIRouter(prefix="/auth", tags=["auth"])


def _profile(session: Session, user: User) -> UserProfile:
    default_workspace = get_default_workspace(session, user.id)
    return UserProfile(
        id=user.id,
        username=user.username,
        email=user.email,
        credit_balance=user.credit_balance,
        lifetime_credits_used=user.lifetime_credits_used,
        is_pro=is_pro_active(user),
        subscription_plan=user.subscription_plan,
        subscription_status=user.subscription_status,
        default_workspace_id=default_workspace.id if default_workspace else None,
        created_at=user.created_at,
    )


def _token_response(session: Session, user: User) -> TokenResponse:
    token, expires_in = create_access_token(AuthContext(user_id=user.id, email=user.email))
    return TokenResponse(access_token=token, expires_in=expires_in, user=_profile(session, user))


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, session: Session = Depends(get_session)) -> TokenResponse:
    user = register_user(
        session,
        username=payload.username,
        email=str(payload.email),
        password=payload.password,
    )
    return _token_response(session, user)


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, session: Session = Depends(get_session)) -> TokenResponse:
    user = authenticate_user(session, email=str(payload.email), password=payload.password)
    return _token_response(session, user)


@router.get("/me", response_model=UserProfile)
def me(
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> UserProfile:
    return _profile(session, get_active_user(session, auth.user_id))
