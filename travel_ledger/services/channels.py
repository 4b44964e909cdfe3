# travel_ledger/services/channels.py
"""
Payment-channel registry.

Each user sees the built-in channels plus their own rows. A row can add a new
code or relabel a built-in one (e.g. ALIPAY -> "支付宝花呗"). Lookups work both
ways so a spreadsheet can carry either the code or the label a user sees.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from travel_ledger.models import PaymentChannel, utcnow
from travel_ledger.normalize import cell_to_string, normalize_pay_channel_code

BUILTIN_CHANNELS: Dict[str, str] = {
    "ALIPAY": "支付宝",
    "WECHAT": "微信",
    "UNIONPAY": "银联",
    "CASH": "现金",
    "DOUYIN_MONTHLY": "抖音月付",
    "MEITUAN_MONTHLY": "美团月付",
    "OTHER": "其他",
}

FALLBACK_LABEL = "其他"
MAX_VALUE_LENGTH = 50
MAX_LABEL_LENGTH = 100


class ChannelError(ValueError):
    """Invalid channel input; the message is safe to show to the user."""


class DuplicateChannelError(ChannelError):
    """The user already has a channel with this value."""


@dataclass
class ChannelRegistry:
    value_to_label: Dict[str, str] = field(default_factory=dict)
    label_to_value: Dict[str, str] = field(default_factory=dict)
    custom_values: Set[str] = field(default_factory=set)

    @classmethod
    def load(cls, session: Session, user_id: int) -> "ChannelRegistry":
        """Merge the built-in dictionary with the user's rows (user rows win)."""
        reg = cls(
            value_to_label=dict(BUILTIN_CHANNELS),
            label_to_value={label: code for code, label in BUILTIN_CHANNELS.items()},
        )
        rows = session.exec(
            select(PaymentChannel).where(PaymentChannel.user_id == user_id)
        ).all()
        for row in rows:
            value = (row.value or "").strip().upper()
            label = (row.label or "").strip()
            if not value or not label:
                continue
            reg.value_to_label[value] = label
            reg.label_to_value[label] = value
            reg.custom_values.add(value)
        return reg

    def resolve(self, raw: Any) -> Optional[str]:
        """
        Turn what the user typed into a channel code.
        Label first, then the upper-cased code against the label table, else
        the upper-cased code as-is. Use is_allowed() to validate the result.
        """
        text = cell_to_string(raw)
        if not text:
            return None
        if text in self.label_to_value:
            return self.label_to_value[text]
        upper = normalize_pay_channel_code(text)
        if upper in self.label_to_value:
            return self.label_to_value[upper]
        return upper

    def is_allowed(self, code: Optional[str]) -> bool:
        normalized = normalize_pay_channel_code(code)
        if not normalized:
            return False
        return normalized in BUILTIN_CHANNELS or normalized in self.custom_values

    def label_for(self, code: Any) -> str:
        raw = cell_to_string(code)
        normalized = raw.upper() if raw else "OTHER"
        return self.value_to_label.get(normalized) or raw or FALLBACK_LABEL


def is_channel_allowed(session: Session, user_id: int, code: Optional[str]) -> bool:
    """Built-in codes are always valid; anything else needs a row for this user."""
    normalized = normalize_pay_channel_code(code)
    if not normalized:
        return False
    if normalized in BUILTIN_CHANNELS:
        return True
    row = session.exec(
        select(PaymentChannel).where(
            PaymentChannel.user_id == user_id, PaymentChannel.value == normalized
        )
    ).first()
    return row is not None


# ------------ CRUD ------------


def list_channels(session: Session, user_id: int) -> List[PaymentChannel]:
    stmt = (
        select(PaymentChannel)
        .where(PaymentChannel.user_id == user_id)
        .order_by(PaymentChannel.id)
    )
    return list(session.exec(stmt).all())


def _check_label(label: str) -> str:
    label = (label or "").strip()
    if not label:
        raise ChannelError("label 为必填项")
    if len(label) > MAX_LABEL_LENGTH:
        raise ChannelError("字段长度超限")
    return label


def create_channel(
    session: Session, user_id: int, *, value: str, label: str
) -> PaymentChannel:
    """Store a new channel. The value is upper-cased (and de-aliased) before saving."""
    raw_value = (value or "").strip()
    raw_label = (label or "").strip()
    if not raw_value or not raw_label:
        raise ChannelError("value 和 label 为必填项")
    if len(raw_value) > MAX_VALUE_LENGTH or len(raw_label) > MAX_LABEL_LENGTH:
        raise ChannelError("字段长度超限")

    channel = PaymentChannel(
        user_id=user_id,
        value=normalize_pay_channel_code(raw_value),
        label=raw_label,
    )
    session.add(channel)
    try:
        session.commit()
    except IntegrityError as ex:
        session.rollback()
        raise DuplicateChannelError("该渠道标识已存在") from ex
    session.refresh(channel)
    return channel


def update_channel_label(
    session: Session, user_id: int, channel_id: int, *, label: str
) -> Optional[PaymentChannel]:
    """Change the label only; the value is the channel's identity. None if not the user's."""
    new_label = _check_label(label)
    channel = session.exec(
        select(PaymentChannel).where(
            PaymentChannel.id == channel_id, PaymentChannel.user_id == user_id
        )
    ).first()
    if channel is None:
        return None
    channel.label = new_label
    channel.updated_at = utcnow()
    session.add(channel)
    session.commit()
    session.refresh(channel)
    return channel
