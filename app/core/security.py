from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt

from app.core.config import settings


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Создание JWT токена доступа"""
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=15)  # По умолчанию 15 минут

    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return encoded_jwt


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Проверка JWT токена и извлечение данных"""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        return payload
    except JWTError:
        return None


def create_file_token(ref: str, ttl_seconds: int) -> str:
    """Подписанная ссылка на файл в локальном хранилище"""
    return create_access_token(
        {"ref": ref, "type": "file"},
        expires_delta=timedelta(seconds=ttl_seconds)
    )


def verify_file_token(token: str) -> Optional[str]:
    """Проверка токена файла, возвращает ссылку на объект"""
    payload = verify_token(token)

    if not payload or payload.get("type") != "file":
        return None

    return payload.get("ref")
