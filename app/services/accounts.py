"""
Registration, OTP verification and session lifecycle.

A user moves Unregistered -> PendingVerification -> Activated. Issuing a
challenge (register / resend) is one unit of work whose commit is gated on the
OTP mail being delivered: if the mail cannot be sent, the user upsert and the
new challenge are rolled back together.
"""

from datetime import datetime, timedelta
from typing import Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import transaction
from app.core.errors import (
    AlreadyActivated,
    Conflict,
    InternalError,
    InvalidOrExpired,
    NotFound,
    NotificationError,
    Unauthorized,
)
from app.models.otp import UserOtp
from app.models.user import User
from app.schemas.user import RegisterRequest
from app.services.email import EmailService
from app.services.security import (
    generate_otp,
    hash_password,
    issue_access_token,
    revoke_all_tokens,
    revoke_token,
    verify_password,
)


def find_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email).first()


def sweep_expired_otps(db: Session, now: Optional[datetime] = None) -> int:
    """Delete every challenge past its expiry, for any user, verified or not."""
    now = now or datetime.utcnow()
    deleted = (
        db.query(UserOtp)
        .filter(UserOtp.expires_at <= now)
        .delete(synchronize_session=False)
    )
    if deleted:
        logger.info(f"Cleaned up expired OTPs deleted_count={deleted}")
    return deleted


def _issue_challenge(db: Session, user: User) -> UserOtp:
    """Replace the user's unverified challenges with a fresh one. Caller owns the transaction."""
    settings = get_settings()
    deleted = (
        db.query(UserOtp)
        .filter(UserOtp.user_id == user.id, UserOtp.is_verified.is_(False))
        .delete(synchronize_session=False)
    )
    logger.info(f"Deleted unverified OTPs user_id={user.id} deleted_count={deleted}")

    otp = UserOtp(
        user_id=user.id,
        otp_code=generate_otp(settings.OTP_MIN, settings.OTP_MAX),
        expires_at=datetime.utcnow() + timedelta(minutes=settings.OTP_TTL_MINUTES),
        is_verified=False,
    )
    db.add(otp)
    db.flush()
    logger.info(f"OTP record created user_id={user.id} expires_at={otp.expires_at.isoformat()}")
    return otp


def _deliver_or_fail(mailer: EmailService, user: User, otp: UserOtp, failure_message: str) -> None:
    try:
        sent = mailer.send_otp_email(user.email, otp.otp_code, user.display_name)
    except Exception:
        logger.exception(f"OTP mail transport raised user_id={user.id}")
        sent = False
    if not sent:
        logger.error(f"FAILED to send OTP email user_id={user.id}; rolling back")
        raise NotificationError(failure_message)
    logger.info(f"OTP email sent user_id={user.id}")


def register(db: Session, mailer: EmailService, payload: RegisterRequest) -> str:
    logger.info(f"Register started email={payload.email}")

    existing = find_user_by_email(db, payload.email)
    if existing and existing.is_activated:
        logger.info(f"Register rejected: account already activated user_id={existing.id}")
        raise Conflict("Account already exists and is activated.")

    try:
        with transaction(db):
            sweep_expired_otps(db)

            # Re-registering an unactivated email overwrites its password and profile
            user = existing or User(email=payload.email)
            user.hashed_password = hash_password(payload.password)
            user.first_name = payload.first_name
            user.last_name = payload.last_name
            user.company = payload.company
            user.is_activated = False
            db.add(user)
            db.flush()

            otp = _issue_challenge(db, user)
            _deliver_or_fail(
                mailer,
                user,
                otp,
                "Registration failed. Unable to send verification email. Please try again.",
            )
    except NotificationError:
        raise
    except SQLAlchemyError:
        logger.exception(f"Register failed email={payload.email}")
        raise InternalError("Registration failed. Please try again later.")

    logger.info(f"Register completed user_id={user.id}")
    return "Registration successful. Please check your email for the OTP."


def verify_otp(db: Session, email: str, code: str) -> str:
    logger.info(f"OTP verification started email={email}")
    now = datetime.utcnow()

    try:
        with transaction(db):
            sweep_expired_otps(db, now)
    except SQLAlchemyError:
        logger.exception("Failed to cleanup expired OTPs")
        raise InternalError("Verification failed. Please try again later.")

    user = find_user_by_email(db, email)
    if not user:
        logger.warning(f"OTP verification: user not found email={email}")
        raise NotFound("User not found.")

    otp = (
        db.query(UserOtp)
        .filter(
            UserOtp.user_id == user.id,
            UserOtp.otp_code == code,
            UserOtp.is_verified.is_(False),
            UserOtp.expires_at > now,
        )
        .first()
    )
    if not otp:
        logger.warning(f"Invalid or expired OTP user_id={user.id}")
        raise InvalidOrExpired("Invalid or expired OTP.")

    try:
        with transaction(db):
            otp.is_verified = True
            user.is_activated = True
            db.flush()
            deleted = (
                db.query(UserOtp)
                .filter(UserOtp.user_id == user.id)
                .delete(synchronize_session=False)
            )
    except SQLAlchemyError:
        logger.exception(f"OTP verification failed user_id={user.id}")
        raise InternalError("Verification failed. Please try again later.")

    logger.info(f"Account activated user_id={user.id} deleted_otps={deleted}")
    return "Account activated successfully."


def login(db: Session, email: str, password: str) -> tuple[str, User]:
    logger.info(f"Login started email={email}")
    user = find_user_by_email(db, email)
    if not user:
        logger.warning(f"Login: user not found email={email}")
        raise Unauthorized("Invalid credentials.")

    if not user.is_activated:
        logger.warning(f"Login: account not activated user_id={user.id}")
        raise Unauthorized("Account not activated. Please verify your email first.")

    if not verify_password(password, user.hashed_password):
        logger.warning(f"Login: password verification failed user_id={user.id}")
        raise Unauthorized("Invalid credentials.")

    try:
        with transaction(db):
            revoked = revoke_all_tokens(db, user)
            token = issue_access_token(db, user)
    except SQLAlchemyError:
        logger.exception(f"Login failed user_id={user.id}")
        raise InternalError("Login failed. Please try again later.")

    logger.info(f"Login completed user_id={user.id} revoked_tokens={revoked}")
    return token, user


def resend_otp(db: Session, mailer: EmailService, email: str) -> str:
    logger.info(f"Resend OTP started email={email}")
    user = find_user_by_email(db, email)
    if not user:
        logger.warning(f"Resend OTP: user not found email={email}")
        raise NotFound("User not found.")

    if user.is_activated:
        logger.info(f"Resend OTP: account already activated user_id={user.id}")
        raise AlreadyActivated("Account is already activated.")

    try:
        with transaction(db):
            sweep_expired_otps(db)
            otp = _issue_challenge(db, user)
            _deliver_or_fail(mailer, user, otp, "Failed to resend OTP. Please try again.")
    except NotificationError:
        raise
    except SQLAlchemyError:
        logger.exception(f"Resend OTP failed user_id={user.id}")
        raise InternalError("Failed to resend OTP. Please try again later.")

    logger.info(f"Resend OTP completed user_id={user.id}")
    return "OTP resent successfully. Please check your email."


def logout(db: Session, token: Optional[str]) -> str:
    if token:
        with transaction(db):
            deleted = revoke_token(db, token)
        logger.info(f"Logout: current token deleted count={deleted}")
    else:
        logger.info("Logout: no session token presented")
    return "Logged out successfully."
