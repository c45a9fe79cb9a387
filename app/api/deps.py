from datetime import datetime
from typing import Annotated, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.errors import Unauthorized
from app.models.user import User
from app.services.security import decode_access_token, find_access_token


bearer_scheme = HTTPBearer(auto_error=False)


def get_bearer_token(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
) -> Optional[str]:
    if credentials is None or credentials.scheme.lower() != "bearer":
        return None
    return credentials.credentials or None


def get_current_user(
    token: Annotated[Optional[str], Depends(get_bearer_token)],
    db: Annotated[Session, Depends(get_db)],
) -> User:
    if not token:
        raise Unauthorized("Unauthenticated.")

    user_id = decode_access_token(token)
    if user_id is None:
        raise Unauthorized("Unauthenticated.")

    # Revoked tokens have no row left
    record = find_access_token(db, token)
    if record is None or record.user_id != user_id or record.expires_at < datetime.utcnow():
        raise Unauthorized("Unauthenticated.")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None or not user.is_activated:
        raise Unauthorized("Unauthenticated.")

    return user
