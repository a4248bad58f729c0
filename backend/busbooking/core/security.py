"""
Bearer-token identity.

Issuing and refreshing credentials belongs to the identity provider; this
service only decodes the JWT into an Actor and enforces role/company scope.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from busbooking.core.config import get_settings
from busbooking.core.exceptions import AccessDenied
from busbooking.core.logging import bind_actor

CUSTOMER = "CUSTOMER"
CASHIER = "CASHIER"
COMPANY_ADMIN = "COMPANY_ADMIN"
SUPER_ADMIN = "SUPER_ADMIN"

STAFF_ROLES = {CASHIER, COMPANY_ADMIN, SUPER_ADMIN}

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: str = CUSTOMER
    company_id: Optional[int] = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def can_manage_company(self, company_id: int) -> bool:
        if self.role == SUPER_ADMIN:
            return True
        return self.is_staff and self.company_id == company_id


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_actor(token: str) -> Actor:
    settings = get_settings()
    credentials_error = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise credentials_error

    subject = payload.get("sub")
    if subject is None:
        raise credentials_error
    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        raise credentials_error

    company_id = payload.get("company_id")
    return Actor(
        user_id=user_id,
        role=payload.get("role", CUSTOMER),
        company_id=int(company_id) if company_id is not None else None,
    )


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Actor:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    actor = decode_actor(credentials.credentials)
    bind_actor(actor.user_id, actor.role)
    return actor


async def get_current_staff(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_staff:
        raise AccessDenied("Only company staff can perform this action")
    return actor


def require_company_access(actor: Actor, company_id: int) -> None:
    if not actor.can_manage_company(company_id):
        raise AccessDenied("Trip belongs to another company")
