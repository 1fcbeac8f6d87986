from datetime import datetime, timedelta
from datetime import timezone
from typing import Optional
import logging

from jose import ExpiredSignatureError, JWTError, jwt

from app.core.config import Settings

logger = logging.getLogger(__name__)

STAFF_ROLE = "staff"


def create_access_token(data: dict, settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def verify_token(token: str, settings: Settings) -> Optional[dict]:
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError:
        logger.info("Access token expired")
        return None
    except JWTError as e:
        logger.warning(f"Error verifying token: {e}")
        return None
