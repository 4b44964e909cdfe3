# tests/test_channels.py
"""
Payment-channel registry and CRUD against an in-memory DB.
"""

import pytest
from sqlalchemy import text
from sqlmodel import Session, select

from travel_ledger.db import normalize_legacy_pay_channels
from travel_ledger.models import PaymentChannel, User
from travel_ledger.services.channels import (
    ChannelError,
    ChannelRegistry,
    DuplicateChannelError,
    create_channel,
    is_channel_allowed,
    list_channels,
    update_channel_label,
)


def test_builtins_resolve_by_label_and_code(session, user):
    reg = ChannelRegistry.load(session, user.id)
    assert reg.resolve("支付宝") == "ALIPAY"
    assert reg.resolve("wechat") == "WECHAT"
    assert reg.resolve("meituan") == "MEITUAN_MONTHLY"
    assert reg.resolve("") is None
    assert reg.is_allowed("CASH")
    assert not reg.is_allowed("PAYPAL")
    assert reg.label_for("UNIONPAY") == "银联"
    assert reg.label_for(None) == "其他"
    assert reg.label_for("PAYPAL") == "PAYPAL"


def test_custom_channel_added_and_relabels_builtin(session, user):
    create_channel(session, user.id, value="ccb", label="建设银行")
    create_channel(session, user.id, value="ALIPAY", label="支付宝花呗")

    reg = ChannelRegistry.load(session, user.id)
    assert reg.resolve("建设银行") == "CCB"
    assert reg.is_allowed("CCB")
    assert reg.label_for("ALIPAY") == "支付宝花呗"
    assert reg.resolve("支付宝花呗") == "ALIPAY"
    assert is_channel_allowed(session, user.id, "ccb")
    assert [c.value for c in list_channels(session, user.id)] == ["CCB", "ALIPAY"]


def test_custom_channels_are_per_user(session, user):
    other = User(email="other@test.com", hashed_password="x")
    session.add(other)
    session.commit()
    create_channel(session, user.id, value="CCB", label="建设银行")

    assert not ChannelRegistry.load(session, other.id).is_allowed("CCB")
    assert not is_channel_allowed(session, other.id, "CCB")


def test_create_channel_validation(session, user):
    with pytest.raises(ChannelError, match="value 和 label 为必填项"):
        create_channel(session, user.id, value=" ", label="x")
    with pytest.raises(ChannelError, match="字段长度超限"):
        create_channel(session, user.id, value="X" * 51, label="x")

    create_channel(session, user.id, value="ccb", label="建设银行")
    with pytest.raises(DuplicateChannelError):
        create_channel(session, user.id, value="CCB", label="again")


def test_update_label_only_for_owner(session, user):
    channel = create_channel(session, user.id, value="CCB", label="建设银行")
    updated = update_channel_label(session, user.id, channel.id, label="建行")
    assert updated.label == "建行"
    assert updated.value == "CCB"

    assert update_channel_label(session, user.id + 1, channel.id, label="nope") is None
    with pytest.raises(ChannelError):
        update_channel_label(session, user.id, channel.id, label="")


def test_legacy_short_codes_rewritten(engine):
    with Session(engine) as s:
        u = User(email="legacy@test.com", hashed_password="x")
        s.add(u)
        s.commit()
        s.refresh(u)
        uid = u.id

    with engine.begin() as conn:
        conn.execute(
            text(
                "INSERT INTO payment_channel (user_id, value, label, created_at, updated_at) "
                "VALUES (:uid, 'MEITUAN', '美团', '2026-01-01', '2026-01-01')"
            ),
            {"uid": uid},
        )

    normalize_legacy_pay_channels(engine)
    normalize_legacy_pay_channels(engine)  # idempotent

    with Session(engine) as s:
        values = [c.value for c in s.exec(select(PaymentChannel)).all()]
    assert values == ["MEITUAN_MONTHLY"]
