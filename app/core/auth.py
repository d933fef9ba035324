import uuid
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer

from app.core.security import verify_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def user_id_from_token(token: str) -> Optional[uuid.UUID]:
    """Извлечение UUID пользователя из JWT"""
    payload = verify_token(token)
    if not payload:
        return None
    try:
        return uuid.UUID(str(payload.get("sub")))
    except ValueError:
        return None


async def get_current_user_id(token: str = Depends(oauth2_scheme)) -> uuid.UUID:
    user_id = user_id_from_token(token)

    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid token")

    return user_id
