# backend/slotlock/auth.py
"""
Caller identity.

The upstream gateway authenticates the user and forwards identity headers:
    X-User-Id   users.id
    X-User-Role buyer | seller
"""

from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException

from .models import UserRole


@dataclass(frozen=True)
class CurrentUser:
    user_id: str
    role: UserRole


def get_current_user(
    x_user_id: str | None = Header(None),
    x_user_role: str | None = Header(None),
) -> CurrentUser:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        role = UserRole((x_user_role or "").strip().lower())
    except ValueError:
        raise HTTPException(status_code=401, detail="Unknown user role")
    return CurrentUser(user_id=x_user_id.strip(), role=role)


def require_buyer(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if user.role != UserRole.BUYER:
        raise HTTPException(status_code=403, detail="Only buyers can perform this action")
    return user


def require_seller(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if user.role != UserRole.SELLER:
        raise HTTPException(status_code=403, detail="Only sellers can perform this action")
    return user
