import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from beanie import PydanticObjectId
from bson import ObjectId
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext  # 導入密碼雜湊工具

from models import User

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

bearer_scheme = HTTPBearer(auto_error=False)


def _secret_key() -> str:
    return os.environ.get("SECRET_KEY", "dev-secret-change-me")


def _algorithm() -> str:
    return os.environ.get("JWT_ALGORITHM", "HS256")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    if expires_delta is None:
        expires_delta = timedelta(days=int(os.environ.get("JWT_EXPIRE_DAYS", 7)))
    expire = datetime.now(timezone.utc) + expires_delta
    return jwt.encode(
        {"sub": str(user_id), "exp": expire}, _secret_key(), algorithm=_algorithm()
    )


def decode_access_token(token: str) -> Optional[str]:
    """Returns the user id carried by a valid token, or None."""
    try:
        payload = jwt.decode(token, _secret_key(), algorithms=[_algorithm()])
    except JWTError:
        return None
    return payload.get("sub")


async def _user_from_token(token: str) -> Optional[User]:
    user_id = decode_access_token(token)
    if not user_id or not ObjectId.is_valid(user_id):
        return None
    user = await User.get(PydanticObjectId(user_id))
    if user is None or not user.is_active:
        return None
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> User:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access denied. No token provided.",
        )
    user = await _user_from_token(credentials.credentials)
    if user is None:
        logger.info("Rejected bearer token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token."
        )
    return user


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[User]:
    if credentials is None:
        return None
    return await _user_from_token(credentials.credentials)
