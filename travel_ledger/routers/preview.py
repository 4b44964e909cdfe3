# travel_ledger/routers/preview.py
# Anonymous, read-only view of one shared book. The preview id in the path is
# the only credential; the login session is never consulted here.
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel import Session

from travel_ledger.config import Settings, get_app_settings
from travel_ledger.db import get_session
from travel_ledger.models import Book
from travel_ledger.routers.expenses import serve_attachment
from travel_ledger.schemas import envelope
from travel_ledger.services import attachments as attachment_service
from travel_ledger.services import books as book_service
from travel_ledger.services import expenses as expense_service
from travel_ledger.services.preview import PreviewContext, resolve

router = APIRouter(prefix="/books/preview/books", tags=["preview"])


def preview_context(
    preview_id: str, session: Session = Depends(get_session)
) -> PreviewContext:
    ctx = resolve(session, preview_id)
    if ctx is None:
        # unknown, disabled and expired look the same
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="预览未开启或链接无效"
        )
    return ctx


def _shared_book(session: Session, ctx: PreviewContext) -> Book:
    book = book_service.get_book_for_user(session, ctx.user_id, ctx.book_id)
    if book is None:
        raise HTTPException(status_code=404, detail="账本不存在或无权访问")
    return book


@router.get("/{preview_id}")
def get_book(
    ctx: PreviewContext = Depends(preview_context),
    session: Session = Depends(get_session),
):
    book = _shared_book(session, ctx)
    data = book.model_dump()
    data["show_receipts"] = ctx.show_receipts
    return envelope("获取账本详情成功", data)


@router.get("/{preview_id}/stats/summary")
def stats_summary(
    ctx: PreviewContext = Depends(preview_context),
    session: Session = Depends(get_session),
):
    book = _shared_book(session, ctx)
    return envelope("获取统计摘要成功", book_service.summary_stats(session, book.id))


@router.get("/{preview_id}/stats/daily")
def stats_daily(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    ctx: PreviewContext = Depends(preview_context),
    session: Session = Depends(get_session),
):
    book = _shared_book(session, ctx)
    data = book_service.daily_stats(
        session, book.id, start_date=start_date, end_date=end_date
    )
    return envelope("获取每日统计成功", data)


@router.get("/{preview_id}/expenses")
def list_expenses(
    page: int = 1,
    page_size: int = Query(20, alias="pageSize"),
    category: Optional[str] = None,
    pay_channel: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    keyword: Optional[str] = None,
    ctx: PreviewContext = Depends(preview_context),
    session: Session = Depends(get_session),
):
    book = _shared_book(session, ctx)
    filters = expense_service.ExpenseFilters(
        category=category,
        pay_channel=pay_channel,
        date_from=date_from,
        date_to=date_to,
        keyword=keyword,
    )
    data = expense_service.list_expenses(
        session, book.id, filters, page=page, page_size=page_size
    )
    return envelope("获取花销记录成功", data)


@router.get("/{preview_id}/expenses/{expense_id}/attachments")
def list_attachments(
    preview_id: str,
    expense_id: int,
    ctx: PreviewContext = Depends(preview_context),
    session: Session = Depends(get_session),
):
    if not ctx.show_receipts:
        return envelope("获取附件成功", [])
    item = expense_service.get_expense_in_book(session, ctx.book_id, expense_id)
    if item is None:
        raise HTTPException(status_code=404, detail="花销记录不存在或无权访问")
    items = [
        attachment_service.attachment_to_dict(
            a, f"/books/preview/books/{preview_id}/expense-attachments/{a.file_name}"
        )
        for a in attachment_service.list_attachments(session, item.id)
    ]
    return envelope("获取附件成功", items)


@router.get("/{preview_id}/expense-attachments/{file_name}")
def download_attachment(
    preview_id: str,
    file_name: str,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
):
    if not attachment_service.is_valid_file_name(file_name.strip()):
        raise HTTPException(status_code=400, detail="文件名不合法")
    ctx = preview_context(preview_id, session)
    if not ctx.show_receipts:
        raise HTTPException(status_code=403, detail="票据预览未开启")
    return serve_attachment(
        session, settings.attachments_dir, file_name, book_id=ctx.book_id
    )
