# travel_ledger/routers/books.py
from __future__ import annotations

from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile, status
from sqlmodel import Session

from travel_ledger.config import Settings, get_app_settings
from travel_ledger.db import get_session
from travel_ledger.models import Book
from travel_ledger.schemas import (
    BookIn,
    BookUpdate,
    PreviewSettings,
    PreviewToggle,
    envelope,
)
from travel_ledger.security import require_user_id
from travel_ledger.services import books as book_service
from travel_ledger.services import preview as preview_service
from travel_ledger.services.exporter import export_book
from travel_ledger.services.importer import (
    TEMPLATE_FILENAME,
    ImportFailedError,
    ImportStructureError,
    build_import_template,
    import_workbook,
)
from travel_ledger.services.workbook import XLSX_MEDIA_TYPE

router = APIRouter(prefix="/books", tags=["books"])

BOOK_NOT_FOUND = "账本不存在或无权访问"


def _owned_book(session: Session, user_id: int, book_id: int) -> Book:
    """The user's book, or 404 (same answer whether it is missing or someone else's)."""
    book = book_service.get_book_for_user(session, user_id, book_id)
    if book is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=BOOK_NOT_FOUND)
    return book


def _xlsx_download(filename: str, data: bytes) -> Response:
    # header values must be latin-1; percent-encode the (usually Chinese) name
    quoted = quote(filename, safe="")
    return Response(
        content=data,
        media_type=XLSX_MEDIA_TYPE,
        headers={
            "Content-Disposition": f"attachment; filename=\"{quoted}\"; filename*=UTF-8''{quoted}"
        },
    )


# ---- collection + literal paths (before /{book_id}) ------------------------


@router.get("")
def list_books(
    user_id: int = Depends(require_user_id), session: Session = Depends(get_session)
):
    return envelope("获取账本列表成功", book_service.list_books(session, user_id))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_book(
    body: BookIn,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
):
    try:
        book = book_service.create_book(
            session,
            user_id,
            name=body.name,
            start_date=body.start_date,
            end_date=body.end_date,
            description=body.description,
        )
    except book_service.BookValidationError as ex:
        raise HTTPException(status_code=400, detail=str(ex))
    return envelope("创建账本成功", book)


@router.get("/stats/leaderboard")
def leaderboard(
    user_id: int = Depends(require_user_id), session: Session = Depends(get_session)
):
    return envelope("获取账本排行榜成功", book_service.leaderboard(session, user_id))


@router.get("/import/template")
def download_template(user_id: int = Depends(require_user_id)):
    return _xlsx_download(TEMPLATE_FILENAME, build_import_template())


@router.post("/import")
async def import_book(
    file: Optional[UploadFile] = File(None),
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
):
    if file is None:
        raise HTTPException(status_code=400, detail="请上传xlsx文件")
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="请上传xlsx文件")
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(status_code=413, detail="文件大小超出限制")

    try:
        result = import_workbook(
            session, user_id, data, default_currency=settings.default_currency
        )
    except ImportStructureError as ex:
        raise HTTPException(status_code=400, detail=str(ex))
    except ImportFailedError as ex:
        # details already logged by the importer
        raise HTTPException(status_code=500, detail=str(ex))
    return envelope("导入成功", result.to_dict())


# ---- single book -----------------------------------------------------------


@router.get("/{book_id}")
def get_book(
    book_id: int,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
):
    return envelope("获取账本详情成功", _owned_book(session, user_id, book_id))


@router.put("/{book_id}")
def update_book(
    book_id: int,
    body: BookUpdate,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
):
    book = _owned_book(session, user_id, book_id)
    try:
        book = book_service.update_book(
            session, book, body.model_dump(exclude_unset=True)
        )
    except book_service.BookValidationError as ex:
        raise HTTPException(status_code=400, detail=str(ex))
    return envelope("更新账本成功", book)


@router.delete("/{book_id}")
def delete_book(
    book_id: int,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
):
    book = _owned_book(session, user_id, book_id)
    book_service.delete_book(session, settings.attachments_dir, book)
    return envelope("删除账本成功")


@router.get("/{book_id}/stats/summary")
def stats_summary(
    book_id: int,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
):
    book = _owned_book(session, user_id, book_id)
    return envelope("获取统计摘要成功", book_service.summary_stats(session, book.id))


@router.get("/{book_id}/stats/daily")
def stats_daily(
    book_id: int,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
):
    book = _owned_book(session, user_id, book_id)
    data = book_service.daily_stats(
        session, book.id, start_date=start_date, end_date=end_date
    )
    return envelope("获取每日统计成功", data)


@router.get("/{book_id}/export")
def export(
    book_id: int,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
):
    exported = export_book(session, user_id, book_id)
    if exported is None:
        raise HTTPException(status_code=404, detail=BOOK_NOT_FOUND)
    filename, data = exported
    return _xlsx_download(filename, data)


# ---- preview grant (owner side) --------------------------------------------


@router.get("/{book_id}/preview-status")
def get_preview_status(
    book_id: int,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
):
    book = _owned_book(session, user_id, book_id)
    return envelope(
        "获取预览状态成功", preview_service.preview_status(session, user_id, book.id)
    )


@router.put("/{book_id}/preview-status")
def put_preview_status(
    book_id: int,
    body: PreviewToggle,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
):
    book = _owned_book(session, user_id, book_id)
    data = preview_service.set_enabled(
        session, user_id, book.id, body.enabled, days=settings.preview_days
    )
    return envelope("预览已开启" if body.enabled else "预览已关闭", data)


@router.put("/{book_id}/preview-settings")
def put_preview_settings(
    book_id: int,
    body: PreviewSettings,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
):
    book = _owned_book(session, user_id, book_id)
    shown = preview_service.set_show_receipts(session, user_id, book.id, body.show_receipts)
    return envelope("更新预览设置成功", {"show_receipts": shown})


@router.get("/{book_id}/preview-token")
def get_preview_token(
    book_id: int,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
):
    book = _owned_book(session, user_id, book_id)
    secret = preview_service.get_or_create_secret(session, user_id, book.id)
    return envelope("获取预览链接成功", {"preview_id": secret})
