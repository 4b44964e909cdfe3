# travel_ledger/services/attachments.py
"""
Receipt images.

Blobs live in one flat directory under random 32-hex names. The blob is
written before its row; a crash in between leaves an orphan file, never a
row without a file.
"""

from __future__ import annotations

import logging
import re
import secrets
from pathlib import Path
from typing import Iterable, List, Optional

from sqlmodel import Session, select

from travel_ledger.models import Book, ExpenseAttachment, ExpenseItem

logger = logging.getLogger("travel_ledger.attachments")

FILE_NAME_RE = re.compile(r"^[a-f0-9]{32}\.[a-z0-9]{1,10}$", re.IGNORECASE)
_SAFE_EXT_RE = re.compile(r"^\.[a-z0-9]{1,10}$")

_MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


def infer_image_extension(mime_type: str, original_name: Optional[str]) -> str:
    """Prefer the uploaded file's own extension if it is safe, else derive one from the MIME type."""
    ext = Path(original_name or "").suffix.lower()
    if ext and _SAFE_EXT_RE.match(ext):
        return ext
    return _MIME_EXTENSIONS.get((mime_type or "").lower(), ".png")


def is_valid_file_name(file_name: str) -> bool:
    return bool(FILE_NAME_RE.match(file_name or ""))


def blob_path(base_dir: str, file_name: str) -> Optional[Path]:
    """Absolute path of a blob, or None if the name is malformed or escapes base_dir."""
    if not is_valid_file_name(file_name):
        return None
    base = Path(base_dir).resolve()
    path = (base / file_name).resolve()
    if path.parent != base:
        return None
    return path


def remove_blobs(base_dir: str, file_names: Iterable[str]) -> None:
    """Best-effort unlink; a missing or locked file is logged, not raised."""
    for name in file_names:
        path = blob_path(base_dir, name)
        if path is None:
            continue
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.exception("Failed to delete attachment blob %s", name)


def save_attachment(
    session: Session,
    base_dir: str,
    *,
    expense_id: int,
    data: bytes,
    mime_type: str,
    original_name: Optional[str],
) -> ExpenseAttachment:
    directory = Path(base_dir)
    directory.mkdir(parents=True, exist_ok=True)
    file_name = secrets.token_hex(16) + infer_image_extension(mime_type, original_name)
    (directory / file_name).write_bytes(data)

    attachment = ExpenseAttachment(
        expense_id=expense_id,
        file_name=file_name,
        original_name=original_name or None,
        mime_type=mime_type,
        size_bytes=len(data),
    )
    session.add(attachment)
    session.commit()
    session.refresh(attachment)
    logger.info("Stored attachment %s for expense %s", file_name, expense_id)
    return attachment


def list_attachments(session: Session, expense_id: int) -> List[ExpenseAttachment]:
    stmt = (
        select(ExpenseAttachment)
        .where(ExpenseAttachment.expense_id == expense_id)
        .order_by(ExpenseAttachment.id)
    )
    return list(session.exec(stmt).all())


def delete_attachment(
    session: Session, base_dir: str, *, expense_id: int, attachment_id: int
) -> bool:
    attachment = session.exec(
        select(ExpenseAttachment).where(
            ExpenseAttachment.id == attachment_id,
            ExpenseAttachment.expense_id == expense_id,
        )
    ).first()
    if attachment is None:
        return False
    file_name = attachment.file_name
    session.delete(attachment)
    session.commit()
    remove_blobs(base_dir, [file_name])
    return True


def attachment_to_dict(attachment: ExpenseAttachment, url: str) -> dict:
    return {
        "id": attachment.id,
        "file_name": attachment.file_name,
        "original_name": attachment.original_name or "",
        "mime_type": attachment.mime_type or "",
        "size_bytes": attachment.size_bytes or 0,
        "created_at": attachment.created_at,
        "url": url,
    }


def find_attachment_by_name(
    session: Session,
    file_name: str,
    *,
    book_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> Optional[ExpenseAttachment]:
    """Attachment row for a blob name, limited to one book and/or one owner."""
    stmt = (
        select(ExpenseAttachment)
        .join(ExpenseItem, ExpenseItem.id == ExpenseAttachment.expense_id)
        .where(ExpenseAttachment.file_name == file_name)
    )
    if book_id is not None:
        stmt = stmt.where(ExpenseItem.book_id == book_id)
    if user_id is not None:
        stmt = stmt.join(Book, Book.id == ExpenseItem.book_id).where(Book.user_id == user_id)
    return session.exec(stmt.limit(1)).first()
