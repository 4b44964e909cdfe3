# travel_ledger/services/preview.py
"""
Read-only share links for a book.

A book has at most one BookPreview row:
- no row          -> never shared
- enabled_until <= now -> disabled (secret kept)
- enabled_until >  now -> enabled

The secret is minted once and reused across enable/disable cycles so a link
sent earlier starts working again when the owner re-enables sharing. It
resolves straight to (user_id, book_id) without touching the login session.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlmodel import Session, select

from travel_ledger.models import BookPreview, utcnow

DEFAULT_PREVIEW_DAYS = 30


def new_secret() -> str:
    """18 random bytes as unpadded URL-safe base64 (24 chars)."""
    return secrets.token_urlsafe(18)


@dataclass(frozen=True)
class PreviewContext:
    user_id: int
    book_id: int
    show_receipts: bool


def _disabled_until():
    return utcnow() - timedelta(days=1)


def _get_grant(session: Session, user_id: int, book_id: int) -> Optional[BookPreview]:
    grant = session.get(BookPreview, book_id)
    if grant is None or grant.user_id != user_id:
        return None
    return grant


def _ensure_grant(session: Session, user_id: int, book_id: int) -> BookPreview:
    """Existing grant (with a secret filled in), or a new disabled one. Not committed."""
    grant = session.get(BookPreview, book_id)
    if grant is None:
        grant = BookPreview(
            book_id=book_id,
            user_id=user_id,
            secret=new_secret(),
            enabled_until=_disabled_until(),
        )
    else:
        grant.user_id = user_id
        if not grant.secret:
            grant.secret = new_secret()
        grant.updated_at = utcnow()
    session.add(grant)
    return grant


def is_enabled(grant: Optional[BookPreview]) -> bool:
    return grant is not None and grant.enabled_until > utcnow()


def get_or_create_secret(session: Session, user_id: int, book_id: int) -> str:
    """Idempotent: the first call mints the secret, later calls return the same one."""
    grant = _get_grant(session, user_id, book_id)
    if grant is not None and grant.secret:
        return grant.secret
    grant = _ensure_grant(session, user_id, book_id)
    session.commit()
    session.refresh(grant)
    return grant.secret


def set_enabled(
    session: Session,
    user_id: int,
    book_id: int,
    enabled: bool,
    *,
    days: int = DEFAULT_PREVIEW_DAYS,
) -> Dict[str, Any]:
    """Open the link for `days` days, or close it by moving enabled_until into the past."""
    if enabled:
        grant = _ensure_grant(session, user_id, book_id)
        grant.enabled_until = utcnow() + timedelta(days=days)
        session.commit()
        session.refresh(grant)
        return {
            "enabled": True,
            "enabled_until": grant.enabled_until,
            "preview_id": grant.secret,
        }

    grant = _get_grant(session, user_id, book_id)
    if grant is not None:
        grant.enabled_until = _disabled_until()
        grant.updated_at = utcnow()
        session.add(grant)
        session.commit()
        session.refresh(grant)
    return {
        "enabled": False,
        "enabled_until": None,
        "preview_id": grant.secret if grant is not None else None,
    }


def set_show_receipts(
    session: Session, user_id: int, book_id: int, show_receipts: bool
) -> bool:
    """Toggle receipt visibility. Creates a disabled grant if the book was never shared."""
    grant = _ensure_grant(session, user_id, book_id)
    grant.show_receipts = bool(show_receipts)
    session.commit()
    return grant.show_receipts


def preview_status(session: Session, user_id: int, book_id: int) -> Dict[str, Any]:
    grant = _get_grant(session, user_id, book_id)
    if grant is not None and not grant.secret:
        # rows from before secrets existed
        grant = _ensure_grant(session, user_id, book_id)
        session.commit()
        session.refresh(grant)
    enabled = is_enabled(grant)
    return {
        "enabled": enabled,
        "enabled_until": grant.enabled_until if enabled else None,
        "preview_id": grant.secret if grant is not None else None,
        "show_receipts": bool(grant.show_receipts) if grant is not None else False,
    }


def resolve(session: Session, secret: Optional[str]) -> Optional[PreviewContext]:
    """
    Secret -> (user, book) while the grant is enabled. Unknown, disabled and
    expired secrets all give None so callers can't tell them apart.
    """
    if not secret:
        return None
    grant = session.exec(
        select(BookPreview).where(
            BookPreview.secret == secret, BookPreview.enabled_until > utcnow()
        )
    ).first()
    if grant is None:
        return None
    return PreviewContext(
        user_id=grant.user_id,
        book_id=grant.book_id,
        show_receipts=bool(grant.show_receipts),
    )
