from typing import Annotated, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.api.deps import get_bearer_token, get_current_user
from app.core.database import get_db
from app.models.user import User
from app.schemas.user import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    ResendOtpRequest,
    UserPublic,
    VerifyOtpRequest,
)
from app.services import accounts
from app.services.email import EmailService, get_mailer


router = APIRouter(tags=["auth"])


@router.post("/register", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def register_user(
    payload: RegisterRequest,
    db: Annotated[Session, Depends(get_db)],
    mailer: Annotated[EmailService, Depends(get_mailer)],
) -> MessageResponse:
    """
    Register (or re-register an unactivated) account and email an OTP.

    No token is issued here; the account must be verified first.
    """
    message = accounts.register(db, mailer, payload)
    return MessageResponse(message=message)


@router.post("/verify-otp", response_model=MessageResponse)
def verify_otp(
    payload: VerifyOtpRequest,
    db: Annotated[Session, Depends(get_db)],
) -> MessageResponse:
    message = accounts.verify_otp(db, payload.email, payload.otp_code)
    return MessageResponse(message=message)


@router.post("/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    db: Annotated[Session, Depends(get_db)],
) -> LoginResponse:
    token, user = accounts.login(db, payload.email, payload.password)
    return LoginResponse(token=token, user=UserPublic.model_validate(user))


@router.post("/resend-otp", response_model=MessageResponse)
def resend_otp(
    payload: ResendOtpRequest,
    db: Annotated[Session, Depends(get_db)],
    mailer: Annotated[EmailService, Depends(get_mailer)],
) -> MessageResponse:
    message = accounts.resend_otp(db, mailer, payload.email)
    return MessageResponse(message=message)


@router.post("/logout", response_model=MessageResponse)
def logout(
    token: Annotated[Optional[str], Depends(get_bearer_token)],
    db: Annotated[Session, Depends(get_db)],
) -> MessageResponse:
    message = accounts.logout(db, token)
    return MessageResponse(message=message)


@router.get("/me", response_model=UserPublic)
def get_me(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    return current_user
