import logging
from datetime import datetime, timedelta, timezone

from fastapi import HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from .config import get_settings
from .exceptions import Unauthenticated

logger = logging.getLogger(__name__)

# auto_error is off so a missing header and a bad token both end up as 401.
bearer_scheme = HTTPBearer(auto_error=False)


class AuthenticatedUser(BaseModel):
    id: str


def verify_token(token: str | None) -> AuthenticatedUser:
    if not token:
        raise Unauthenticated("No token provided.")

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        raise Unauthenticated("Invalid or expired token.") from e

    user_id = payload.get("userId")
    if not user_id:
        raise Unauthenticated("Invalid token: missing userId.")
    return AuthenticatedUser(id=str(user_id))


def create_access_token(user_id: str, expires_in: timedelta = timedelta(days=7)) -> str:
    """Sign a bearer token in the shape the identity service issues."""
    settings = get_settings()
    claims = {"userId": user_id, "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> AuthenticatedUser:
    try:
        return verify_token(credentials.credentials if credentials else None)
    except Unauthenticated as e:
        logger.info("Rejected request: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
