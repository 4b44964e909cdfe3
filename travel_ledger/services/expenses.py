# travel_ledger/services/expenses.py
"""
Expense items: validation for direct (form/JSON) writes, CRUD, and listing.

Import runs its own row checks in services/importer.py; the rules are the
same, only the error reporting differs (per-row instead of per-request).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import or_
from sqlmodel import Session, col, select

from travel_ledger.models import Book, ExpenseAttachment, ExpenseItem, utcnow
from travel_ledger.normalize import (
    CATEGORY_CODES,
    compute_duration_minutes,
    normalize_pay_channel_code,
    parse_date_cell,
    parse_number_cell,
    range_start_minutes,
)
from travel_ledger.services.attachments import remove_blobs
from travel_ledger.services.channels import is_channel_allowed

MAX_PAGE_SIZE = 100


class ExpenseValidationError(ValueError):
    """Rejected expense input; the message is shown to the user as-is."""


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def validate_expense(
    session: Session,
    user_id: int,
    payload: Dict[str, Any],
    *,
    default_currency: str = "CNY",
) -> Dict[str, Any]:
    """
    Check a create/update payload and return the column values to store.
    Raises ExpenseValidationError on the first problem.
    """
    raw_date = payload.get("date")
    title = _text(payload.get("title"))
    raw_amount = payload.get("amount")
    if not raw_date or not title or raw_amount is None or raw_amount == "":
        raise ExpenseValidationError("日期、项目描述和金额为必填项")

    iso_date = parse_date_cell(raw_date)
    if not iso_date:
        raise ExpenseValidationError("日期格式不合法")

    amount = parse_number_cell(raw_amount)
    if amount is None or amount < 0:
        raise ExpenseValidationError("金额不合法")

    raw_discount = payload.get("discount_amount")
    discount = 0.0 if raw_discount in (None, "") else parse_number_cell(raw_discount)
    if discount is None or discount < 0:
        raise ExpenseValidationError("优惠金额不合法")
    if discount > amount:
        raise ExpenseValidationError("优惠金额不能大于金额")

    category = (_text(payload.get("category")) or "").upper()
    if category not in CATEGORY_CODES:
        raise ExpenseValidationError("分类不合法")

    time_range = _text(payload.get("time_range"))
    if time_range:
        duration = compute_duration_minutes(time_range)
        if duration is None:
            raise ExpenseValidationError("时间段格式不合法")
    else:
        given = parse_number_cell(payload.get("duration_minutes"))
        duration = int(given) if given is not None and given >= 0 else None

    vehicle_no = _text(payload.get("vehicle_no"))
    if category == "TRANSPORT" and not vehicle_no:
        raise ExpenseValidationError("交通分类需填写车次/航班号")

    pay_channel = normalize_pay_channel_code(payload.get("pay_channel"))
    if pay_channel and not is_channel_allowed(session, user_id, pay_channel):
        raise ExpenseValidationError("支付渠道不合法")

    return {
        "date": date.fromisoformat(iso_date),
        "time_range": time_range,
        "duration_minutes": duration,
        "duration_display": _text(payload.get("duration_display")),
        "title": title,
        "amount": amount,
        "discount_amount": discount,
        "discount_note": _text(payload.get("discount_note")),
        "currency": _text(payload.get("currency")) or default_currency,
        "vehicle_no": vehicle_no,
        "pay_channel": pay_channel,
        "category": category,
        "remark": _text(payload.get("remark")),
    }


# ------------ Ordering ------------


def recent_first(items: Sequence[ExpenseItem]) -> List[ExpenseItem]:
    """Date desc, then start of time_range desc, then id desc: latest activity on top."""
    return sorted(
        items,
        key=lambda e: (e.date, range_start_minutes(e.time_range), e.id or 0),
        reverse=True,
    )


# ------------ Queries ------------


def get_expense_for_user(
    session: Session, user_id: int, expense_id: int
) -> Optional[ExpenseItem]:
    """Return the expense only if its book belongs to the user."""
    stmt = (
        select(ExpenseItem)
        .join(Book, ExpenseItem.book_id == Book.id)
        .where(ExpenseItem.id == expense_id, Book.user_id == user_id)
    )
    return session.exec(stmt).first()


def get_expense_in_book(
    session: Session, book_id: int, expense_id: int
) -> Optional[ExpenseItem]:
    stmt = select(ExpenseItem).where(
        ExpenseItem.id == expense_id, ExpenseItem.book_id == book_id
    )
    return session.exec(stmt).first()


@dataclass
class ExpenseFilters:
    category: Optional[str] = None
    pay_channel: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    keyword: Optional[str] = None


def list_expenses(
    session: Session,
    book_id: int,
    filters: Optional[ExpenseFilters] = None,
    *,
    page: int = 1,
    page_size: int = 20,
) -> Dict[str, Any]:
    """One page of a book's expenses plus pagination info."""
    filters = filters or ExpenseFilters()
    page = max(1, page)
    page_size = min(MAX_PAGE_SIZE, max(1, page_size))

    stmt = select(ExpenseItem).where(ExpenseItem.book_id == book_id)
    if filters.category:
        stmt = stmt.where(ExpenseItem.category == filters.category.strip().upper())
    pay_channel = normalize_pay_channel_code(filters.pay_channel)
    if pay_channel:
        stmt = stmt.where(ExpenseItem.pay_channel == pay_channel)
    date_from = parse_date_cell(filters.date_from)
    if date_from:
        stmt = stmt.where(ExpenseItem.date >= date.fromisoformat(date_from))
    date_to = parse_date_cell(filters.date_to)
    if date_to:
        stmt = stmt.where(ExpenseItem.date <= date.fromisoformat(date_to))
    keyword = (filters.keyword or "").strip()
    if keyword:
        stmt = stmt.where(
            or_(
                col(ExpenseItem.title).contains(keyword),
                col(ExpenseItem.remark).contains(keyword),
                col(ExpenseItem.vehicle_no).contains(keyword),
            )
        )

    # The secondary key is the start of a free-text time_range ("9:10" sorts
    # after "10:00" as text), so order and slice in Python, not LIMIT/OFFSET.
    rows = recent_first(session.exec(stmt).all())
    total = len(rows)
    offset = (page - 1) * page_size
    return {
        "items": rows[offset : offset + page_size],
        "pagination": {
            "page": page,
            "pageSize": page_size,
            "total": total,
            "totalPages": math.ceil(total / page_size),
        },
    }


# ------------ Commands ------------


def create_expense(session: Session, book_id: int, values: Dict[str, Any]) -> ExpenseItem:
    item = ExpenseItem(book_id=book_id, **values)
    session.add(item)
    session.commit()
    session.refresh(item)
    return item


def update_expense(
    session: Session, item: ExpenseItem, values: Dict[str, Any]
) -> ExpenseItem:
    for key, value in values.items():
        setattr(item, key, value)
    item.updated_at = utcnow()
    session.add(item)
    session.commit()
    session.refresh(item)
    return item


def delete_expense(session: Session, attachments_dir: str, item: ExpenseItem) -> None:
    """Delete the expense, its attachment rows, then their blobs."""
    attachments = session.exec(
        select(ExpenseAttachment).where(ExpenseAttachment.expense_id == item.id)
    ).all()
    file_names = [a.file_name for a in attachments]
    for attachment in attachments:
        session.delete(attachment)
    session.flush()
    session.delete(item)
    session.commit()
    remove_blobs(attachments_dir, file_names)
