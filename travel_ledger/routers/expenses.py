# travel_ledger/routers/expenses.py
# Expense items, their receipt images, and the user's payment channels.
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse
from sqlmodel import Session

from travel_ledger.config import Settings, get_app_settings
from travel_ledger.db import get_session
from travel_ledger.models import ExpenseItem
from travel_ledger.schemas import ChannelIn, ChannelUpdate, ExpenseIn, envelope
from travel_ledger.security import require_user_id
from travel_ledger.services import attachments as attachment_service
from travel_ledger.services import channels as channel_service
from travel_ledger.services import expenses as expense_service
from travel_ledger.services.books import get_book_for_user

router = APIRouter(tags=["expenses"])

BOOK_NOT_FOUND = "账本不存在或无权访问"
EXPENSE_NOT_FOUND = "花销记录不存在或无权访问"


def _owned_expense(session: Session, user_id: int, expense_id: int) -> ExpenseItem:
    item = expense_service.get_expense_for_user(session, user_id, expense_id)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=EXPENSE_NOT_FOUND)
    return item


def _validated(session: Session, user_id: int, body: ExpenseIn, settings: Settings) -> dict:
    try:
        return expense_service.validate_expense(
            session, user_id, body.model_dump(), default_currency=settings.default_currency
        )
    except expense_service.ExpenseValidationError as ex:
        raise HTTPException(status_code=400, detail=str(ex))


def attachment_url(file_name: str) -> str:
    return f"/expense-attachments/{file_name}"


# ---- expenses --------------------------------------------------------------


@router.get("/books/{book_id}/expenses")
def list_expenses(
    book_id: int,
    page: int = 1,
    page_size: int = Query(20, alias="pageSize"),
    category: Optional[str] = None,
    pay_channel: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    keyword: Optional[str] = None,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
):
    book = get_book_for_user(session, user_id, book_id)
    if book is None:
        raise HTTPException(status_code=404, detail=BOOK_NOT_FOUND)
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


@router.post("/books/{book_id}/expenses", status_code=status.HTTP_201_CREATED)
def create_expense(
    book_id: int,
    body: ExpenseIn,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
):
    book = get_book_for_user(session, user_id, book_id)
    if book is None:
        raise HTTPException(status_code=404, detail=BOOK_NOT_FOUND)
    values = _validated(session, user_id, body, settings)
    item = expense_service.create_expense(session, book.id, values)
    return envelope("创建花销记录成功", item)


@router.get("/expenses/{expense_id}")
def get_expense(
    expense_id: int,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
):
    return envelope("获取花销记录详情成功", _owned_expense(session, user_id, expense_id))


@router.put("/expenses/{expense_id}")
def update_expense(
    expense_id: int,
    body: ExpenseIn,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
):
    item = _owned_expense(session, user_id, expense_id)
    values = _validated(session, user_id, body, settings)
    item = expense_service.update_expense(session, item, values)
    return envelope("更新花销记录成功", item)


@router.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
):
    item = _owned_expense(session, user_id, expense_id)
    expense_service.delete_expense(session, settings.attachments_dir, item)
    return envelope("删除花销记录成功")


# ---- attachments -----------------------------------------------------------


@router.get("/expenses/{expense_id}/attachments")
def list_attachments(
    expense_id: int,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
):
    item = _owned_expense(session, user_id, expense_id)
    items = [
        attachment_service.attachment_to_dict(a, attachment_url(a.file_name))
        for a in attachment_service.list_attachments(session, item.id)
    ]
    return envelope("获取附件成功", items)


@router.post("/expenses/{expense_id}/attachments", status_code=status.HTTP_201_CREATED)
async def upload_attachment(
    expense_id: int,
    file: Optional[UploadFile] = File(None),
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
):
    if file is None:
        raise HTTPException(status_code=400, detail="请上传图片文件")
    mime_type = (file.content_type or "").lower()
    if not mime_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="仅支持图片附件")
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="请上传图片文件")
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(status_code=413, detail="文件大小超出限制")

    item = _owned_expense(session, user_id, expense_id)
    attachment = attachment_service.save_attachment(
        session,
        settings.attachments_dir,
        expense_id=item.id,
        data=data,
        mime_type=mime_type,
        original_name=file.filename,
    )
    return envelope(
        "上传附件成功",
        attachment_service.attachment_to_dict(attachment, attachment_url(attachment.file_name)),
    )


@router.delete("/expenses/{expense_id}/attachments/{attachment_id}")
def delete_attachment(
    expense_id: int,
    attachment_id: int,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
):
    item = _owned_expense(session, user_id, expense_id)
    deleted = attachment_service.delete_attachment(
        session, settings.attachments_dir, expense_id=item.id, attachment_id=attachment_id
    )
    if not deleted:
        raise HTTPException(status_code=404, detail="附件不存在或无权访问")
    return envelope("删除附件成功")


@router.get("/expense-attachments/{file_name}")
def download_attachment(
    file_name: str,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
):
    return serve_attachment(session, settings.attachments_dir, file_name, user_id=user_id)


def serve_attachment(
    session: Session,
    attachments_dir: str,
    file_name: str,
    *,
    user_id: Optional[int] = None,
    book_id: Optional[int] = None,
) -> FileResponse:
    """Stream one blob after checking its name and that its row is in scope."""
    file_name = (file_name or "").strip()
    if not attachment_service.is_valid_file_name(file_name):
        raise HTTPException(status_code=400, detail="文件名不合法")
    attachment = attachment_service.find_attachment_by_name(
        session, file_name, book_id=book_id, user_id=user_id
    )
    if attachment is None:
        raise HTTPException(status_code=404, detail="文件不存在或无权访问")
    path = attachment_service.blob_path(attachments_dir, file_name)
    if path is None or not path.is_file():
        raise HTTPException(status_code=404, detail="文件不存在")
    return FileResponse(path, media_type=attachment.mime_type or None)


# ---- payment channels ------------------------------------------------------


@router.get("/payment-channels")
def list_payment_channels(
    user_id: int = Depends(require_user_id), session: Session = Depends(get_session)
):
    return envelope("获取支付渠道成功", channel_service.list_channels(session, user_id))


@router.post("/payment-channels", status_code=status.HTTP_201_CREATED)
def create_payment_channel(
    body: ChannelIn,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
):
    try:
        channel = channel_service.create_channel(
            session, user_id, value=body.value or "", label=body.label or ""
        )
    except channel_service.ChannelError as ex:
        raise HTTPException(status_code=400, detail=str(ex))
    return envelope("新增支付渠道成功", channel)


@router.put("/payment-channels/{channel_id}")
def update_payment_channel(
    channel_id: int,
    body: ChannelUpdate,
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
):
    try:
        channel = channel_service.update_channel_label(
            session, user_id, channel_id, label=body.label or ""
        )
    except channel_service.ChannelError as ex:
        raise HTTPException(status_code=400, detail=str(ex))
    if channel is None:
        raise HTTPException(status_code=404, detail="支付渠道不存在或无权访问")
    return envelope("更新支付渠道成功", channel)
