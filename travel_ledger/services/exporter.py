# travel_ledger/services/exporter.py
"""Export one book's expenses to an .xlsx workbook (single sheet, labels instead of codes)."""

from __future__ import annotations

from typing import Optional, Tuple

from sqlmodel import Session, select

from travel_ledger.models import ExpenseItem
from travel_ledger.normalize import category_label
from travel_ledger.services.books import get_book_for_user
from travel_ledger.services.channels import ChannelRegistry
from travel_ledger.services.expenses import recent_first
from travel_ledger.services.workbook import add_table_sheet, new_workbook, workbook_bytes

EXPORT_SHEET = "花销"

EXPORT_COLUMNS = [
    ("日期", 12),
    ("时间段", 14),
    ("耗时(分钟)", 12),
    ("耗时显示", 12),
    ("项目描述", 30),
    ("金额", 12),
    ("优惠金额", 12),
    ("优惠说明", 18),
    ("货币", 10),
    ("车次/航班号", 16),
    ("支付渠道", 14),
    ("分类", 10),
    ("备注", 30),
]


def export_filename(book_name: str) -> str:
    return f"{book_name}-export.xlsx"


def export_book(session: Session, user_id: int, book_id: int) -> Optional[Tuple[str, bytes]]:
    """(filename, workbook bytes), or None if the book isn't the user's."""
    book = get_book_for_user(session, user_id, book_id)
    if book is None:
        return None

    registry = ChannelRegistry.load(session, user_id)
    items = recent_first(
        session.exec(select(ExpenseItem).where(ExpenseItem.book_id == book.id)).all()
    )
    rows = [
        (
            item.date.isoformat(),
            item.time_range or "",
            item.duration_minutes if item.duration_minutes is not None else "",
            item.duration_display or "",
            item.title,
            item.amount,
            item.discount_amount or 0,
            item.discount_note or "",
            item.currency or "",
            item.vehicle_no or "",
            registry.label_for(item.pay_channel),
            category_label(item.category),
            item.remark or "",
        )
        for item in items
    ]

    wb = new_workbook()
    add_table_sheet(wb, EXPORT_SHEET, EXPORT_COLUMNS, rows)
    return export_filename(book.name), workbook_bytes(wb)
