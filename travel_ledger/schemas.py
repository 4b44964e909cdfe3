# travel_ledger/schemas.py
# Request bodies. Loose types on purpose: values are normalized and checked
# in services/, which owns the user-facing error messages.
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel

from travel_ledger.models import User


class RegisterIn(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    nickname: Optional[str] = None


class LoginIn(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class NicknameIn(BaseModel):
    nickname: Optional[str] = None


class ChangePasswordIn(BaseModel):
    currentPassword: Optional[str] = None
    newPassword: Optional[str] = None


class BookIn(BaseModel):
    name: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    description: Optional[str] = None


class BookUpdate(BaseModel):
    """Only fields present in the request body are applied."""

    name: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    description: Optional[str] = None
    summary: Optional[str] = None


class ExpenseIn(BaseModel):
    date: Any = None
    time_range: Optional[str] = None
    duration_minutes: Any = None
    duration_display: Optional[str] = None
    title: Optional[str] = None
    amount: Any = None
    discount_amount: Any = None
    discount_note: Optional[str] = None
    currency: Optional[str] = None
    vehicle_no: Optional[str] = None
    pay_channel: Optional[str] = None
    category: Optional[str] = None
    remark: Optional[str] = None


class ChannelIn(BaseModel):
    value: Optional[str] = None
    label: Optional[str] = None


class ChannelUpdate(BaseModel):
    label: Optional[str] = None


class PreviewToggle(BaseModel):
    enabled: bool = False


class PreviewSettings(BaseModel):
    show_receipts: bool = False


def user_public(user: User) -> dict:
    """Everything but the password hash."""
    return {
        "id": user.id,
        "email": user.email,
        "nickname": user.nickname,
        "role": user.role,
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }


def envelope(message: str, data: Any = None) -> dict:
    """Success body: {"message": ..., "data": ...}; data is left out when None."""
    body: dict = {"message": message}
    if data is not None:
        body["data"] = data
    return body
