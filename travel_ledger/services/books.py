# travel_ledger/services/books.py
"""
Books (trips) and their statistics.

Every lookup is scoped by user_id; a book that exists but belongs to someone
else is indistinguishable from one that doesn't exist.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlmodel import Session, col, select

from travel_ledger.models import (
    Book,
    BookPreview,
    ExpenseAttachment,
    ExpenseItem,
    utcnow,
)
from travel_ledger.normalize import parse_date_cell
from travel_ledger.services.attachments import remove_blobs

logger = logging.getLogger("travel_ledger.books")


class BookValidationError(ValueError):
    """Rejected book input; the message is shown to the user as-is."""


def _to_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    iso = parse_date_cell(value)
    if not iso:
        raise BookValidationError("日期格式不合法，应为 YYYY-MM-DD")
    return date.fromisoformat(iso)


def get_book_for_user(session: Session, user_id: int, book_id: int) -> Optional[Book]:
    stmt = select(Book).where(Book.id == book_id, Book.user_id == user_id)
    return session.exec(stmt).first()


def find_book_by_name(session: Session, user_id: int, name: str) -> Optional[Book]:
    """First book with this exact name; import relies on names being unique per user."""
    stmt = (
        select(Book)
        .where(Book.user_id == user_id, Book.name == name)
        .order_by(Book.id)
        .limit(1)
    )
    return session.exec(stmt).first()


def list_books(session: Session, user_id: int) -> List[Book]:
    stmt = (
        select(Book)
        .where(Book.user_id == user_id)
        .order_by(col(Book.created_at).desc(), col(Book.id).desc())
    )
    return list(session.exec(stmt).all())


def create_book(
    session: Session,
    user_id: int,
    *,
    name: Optional[str],
    start_date: Any = None,
    end_date: Any = None,
    description: Optional[str] = None,
) -> Book:
    name = (name or "").strip()
    if not name:
        raise BookValidationError("账本名称不能为空")
    book = Book(
        user_id=user_id,
        name=name,
        start_date=_to_date(start_date),
        end_date=_to_date(end_date),
        description=description or None,
    )
    session.add(book)
    session.commit()
    session.refresh(book)
    return book


def update_book(session: Session, book: Book, changes: Dict[str, Any]) -> Book:
    """
    Partial update: only keys present in `changes` are touched.
    The name may be changed but never emptied.
    """
    if "name" in changes:
        name = (changes["name"] or "").strip()
        if not name:
            raise BookValidationError("账本名称不能为空")
        book.name = name
    if "start_date" in changes:
        book.start_date = _to_date(changes["start_date"])
    if "end_date" in changes:
        book.end_date = _to_date(changes["end_date"])
    if "description" in changes:
        book.description = changes["description"]
    if "summary" in changes:
        book.summary = changes["summary"]
    book.updated_at = utcnow()
    session.add(book)
    session.commit()
    session.refresh(book)
    return book


def delete_book(session: Session, attachments_dir: str, book: Book) -> None:
    """
    Remove a book with its expenses, their attachments and its preview grant.
    Rows go in one transaction; blobs are unlinked only after it commits.
    """
    expense_ids = list(
        session.exec(select(ExpenseItem.id).where(ExpenseItem.book_id == book.id)).all()
    )
    file_names: List[str] = []
    try:
        if expense_ids:
            attachments = session.exec(
                select(ExpenseAttachment).where(
                    col(ExpenseAttachment.expense_id).in_(expense_ids)
                )
            ).all()
            file_names = [a.file_name for a in attachments]
            for attachment in attachments:
                session.delete(attachment)
            session.flush()
            for item in session.exec(
                select(ExpenseItem).where(ExpenseItem.book_id == book.id)
            ).all():
                session.delete(item)
            session.flush()
        preview = session.get(BookPreview, book.id)
        if preview is not None:
            session.delete(preview)
            session.flush()
        session.delete(book)
        session.commit()
    except Exception:
        session.rollback()
        raise
    remove_blobs(attachments_dir, file_names)
    logger.info("Deleted book %s with %d expenses", book.id, len(expense_ids))


# ------------ Statistics ------------


def summary_stats(session: Session, book_id: int) -> Dict[str, Any]:
    """Totals for one book, split by category and by pay channel (blank counts as OTHER)."""
    total_count, total_amount, total_saved = session.exec(
        select(
            func.count(ExpenseItem.id),
            func.coalesce(func.sum(ExpenseItem.amount), 0),
            func.coalesce(func.sum(ExpenseItem.discount_amount), 0),
        ).where(ExpenseItem.book_id == book_id)
    ).one()

    def _grouped(key):
        total = func.coalesce(func.sum(ExpenseItem.amount), 0)
        stmt = (
            select(
                key.label("name"),
                func.count(ExpenseItem.id),
                total.label("total_amount"),
                func.coalesce(func.sum(ExpenseItem.discount_amount), 0),
            )
            .where(ExpenseItem.book_id == book_id)
            .group_by(key)
            .order_by(total.desc())
        )
        return [
            {
                "name": name,
                "count": count,
                "totalAmount": amount,
                "savedAmount": saved,
            }
            for name, count, amount, saved in session.exec(stmt).all()
        ]

    channel_key = func.coalesce(
        func.nullif(func.trim(ExpenseItem.pay_channel), ""), "OTHER"
    )
    return {
        "totalCount": total_count,
        "totalAmount": total_amount,
        "totalSaved": total_saved,
        "byCategory": _grouped(ExpenseItem.category),
        "byPayChannel": _grouped(channel_key),
    }


def daily_stats(
    session: Session,
    book_id: int,
    *,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Per-day count, gross, saved and net amounts, newest day first."""
    total = func.coalesce(func.sum(ExpenseItem.amount), 0)
    saved = func.coalesce(func.sum(ExpenseItem.discount_amount), 0)
    stmt = select(ExpenseItem.date, func.count(ExpenseItem.id), total, saved).where(
        ExpenseItem.book_id == book_id
    )
    start_iso = parse_date_cell(start_date)
    if start_iso:
        stmt = stmt.where(ExpenseItem.date >= date.fromisoformat(start_iso))
    end_iso = parse_date_cell(end_date)
    if end_iso:
        stmt = stmt.where(ExpenseItem.date <= date.fromisoformat(end_iso))
    stmt = stmt.group_by(ExpenseItem.date).order_by(col(ExpenseItem.date).desc())

    return [
        {
            "date": day,
            "count": count,
            "totalAmount": amount,
            "savedAmount": discount,
            "netAmount": amount - discount,
        }
        for day, count, amount, discount in session.exec(stmt).all()
    ]


def leaderboard(session: Session, user_id: int) -> Dict[str, Any]:
    """All of a user's books ranked by net spend (amount - discount), biggest first."""
    total_amount = func.coalesce(func.sum(ExpenseItem.amount), 0)
    total_saved = func.coalesce(func.sum(ExpenseItem.discount_amount), 0)
    stmt = (
        select(
            Book.id,
            Book.name,
            func.count(ExpenseItem.id),
            total_amount,
            total_saved,
        )
        .join(ExpenseItem, ExpenseItem.book_id == Book.id, isouter=True)
        .where(Book.user_id == user_id)
        .group_by(Book.id, Book.name, Book.created_at)
        .order_by((total_amount - total_saved).desc(), col(Book.created_at).desc())
    )
    items = [
        {
            "bookId": book_id,
            "bookName": name,
            "totalCount": count,
            "totalAmount": amount,
            "totalSaved": saved,
        }
        for book_id, name, count, amount, saved in session.exec(stmt).all()
    ]
    return {
        "totals": {
            "totalCount": sum(i["totalCount"] for i in items),
            "totalAmount": sum(i["totalAmount"] for i in items),
            "totalSaved": sum(i["totalSaved"] for i in items),
        },
        "items": items,
    }
