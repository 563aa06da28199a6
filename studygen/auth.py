from datetime import datetime, timedelta
import os
from typing import Optional
import structlog

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError

from studygen.services.errors import AuthenticationError

logger = structlog.get_logger()

SECRET_KEY = os.getenv("JWT_SECRET", "dev-secret-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 8

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(subject: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": str(subject), "exp": expire, "type": "access"}
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    logger.info("access_token_created", user_id=subject, expires_at=expire.isoformat())
    return encoded_jwt


def decode_token(token: str) -> Optional[str]:
    """Return the user id of a valid access token, None otherwise."""
    try:
        # jose verifies the exp claim
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning("token_verification_failed", error=str(e))
        return None

    if payload.get("type") != "access":
        logger.warning("invalid_token_type", expected="access", actual=payload.get("type"))
        return None
    return payload.get("sub")


def get_current_user_id(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> str:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("No authorization header")
    user_id = decode_token(credentials.credentials)
    if not user_id:
        raise AuthenticationError("User not authenticated")
    return user_id
