import secrets
import hashlib
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.models.access_token import AccessToken
from app.models.user import User


def hash_password(password: str) -> str:
    # Truncate password to 72 bytes (bcrypt limit)
    password_bytes = password.encode("utf-8")[:72]
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password_bytes, salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    password_bytes = plain_password.encode("utf-8")[:72]
    hashed_bytes = hashed_password.encode("utf-8")
    try:
        return bcrypt.checkpw(password_bytes, hashed_bytes)
    except ValueError:
        # malformed hash in the database
        return False


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_otp(min_value: int, max_value: int) -> str:
    """Uniformly random integer in [min_value, max_value], as a string."""
    return str(min_value + secrets.randbelow(max_value - min_value + 1))


def issue_access_token(db: Session, user: User) -> str:
    """
    Create a signed JWT for the user and record its hash.

    The caller owns the transaction; nothing is committed here.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    token = jwt.encode(
        {"sub": str(user.id), "jti": uuid.uuid4().hex, "iat": int(now.timestamp()), "exp": expire},
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )
    db.add(
        AccessToken(
            user_id=user.id,
            token_hash=hash_token(token),
            expires_at=expire.replace(tzinfo=None),
        )
    )
    return token


def decode_access_token(token: str) -> Optional[int]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        user_id_raw = payload.get("sub")
        if user_id_raw is None:
            return None
        return int(user_id_raw)
    except (JWTError, ValueError, TypeError):
        return None


def find_access_token(db: Session, token: str) -> Optional[AccessToken]:
    return (
        db.query(AccessToken)
        .filter(AccessToken.token_hash == hash_token(token))
        .first()
    )


def revoke_all_tokens(db: Session, user: User) -> int:
    return (
        db.query(AccessToken)
        .filter(AccessToken.user_id == user.id)
        .delete(synchronize_session=False)
    )


def revoke_token(db: Session, token: str) -> int:
    return (
        db.query(AccessToken)
        .filter(AccessToken.token_hash == hash_token(token))
        .delete(synchronize_session=False)
    )
