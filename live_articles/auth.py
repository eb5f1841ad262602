# live_articles/auth.py
from datetime import datetime, timedelta
from typing import Optional

from jose import JWTError, jwt
from sqlalchemy.orm import Session

from . import config, models
from .errors import AuthError


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=config.JWT_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def create_user_token(user: models.User) -> str:
    return create_access_token({"sub": str(user.id), "role": user.role})


def decode_access_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except JWTError as e:
        raise AuthError("User not authenticated") from e


def get_current_user(db: Session, token: str) -> models.User:
    payload = decode_access_token(token)
    user_id = payload.get("sub")
    if user_id is None or not str(user_id).isdigit():
        raise AuthError("User not authenticated")
    user = db.query(models.User).filter(models.User.id == int(user_id)).first()
    if not user:
        raise AuthError("User not authenticated")
    return user
