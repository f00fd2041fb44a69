from enum import Enum
from typing import Annotated, Optional
from uuid import UUID

import jwt
from jwt.exceptions import InvalidTokenError
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, ValidationError

from app.core.config import settings

# 令牌由认证服务签发，本服务只负责校验
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")

class UserRole(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"

class CurrentUser(BaseModel):
    id: UUID
    username: Optional[str] = None
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)]
) -> CurrentUser:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload: dict = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = payload.get("sub")
        if user_id is None:
            raise credentials_exception
        return CurrentUser(
            id=user_id,
            username=payload.get("username"),
            role=payload.get("role") or UserRole.USER,
        )
    except (InvalidTokenError, ValidationError):
        raise credentials_exception
