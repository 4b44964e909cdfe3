# travel_ledger/models.py
import datetime as dt
from enum import Enum  # small enums for clarity
from typing import Optional  # nullable fields

from sqlalchemy import DateTime  # naive UTC; see utcnow()
from sqlmodel import Field, SQLModel, UniqueConstraint


def utcnow() -> dt.datetime:
    """All stored timestamps are naive UTC; this is the only place they come from."""
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
    user = "user"  # stored as TEXT
    admin = "admin"


class User(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(index=True)
    hashed_password: str  # never the plain password
    nickname: Optional[str] = Field(default=None, max_length=30)
    role: Role = Field(default=Role.user)
    created_at: dt.datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: dt.datetime = Field(default_factory=utcnow, sa_type=DateTime)

    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)


class Book(SQLModel, table=True):
    """A trip. Import matches books on (user_id, name)."""

    __tablename__ = "travel_book"
    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="user.id")  # owner
    name: str = Field(index=True)
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    description: Optional[str] = None
    summary: Optional[str] = None  # free-text wrap-up written after the trip
    created_at: dt.datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: dt.datetime = Field(default_factory=utcnow, sa_type=DateTime)


class ExpenseItem(SQLModel, table=True):
    """
    One dated spend inside a book.
    Net cost is amount - discount_amount; it is never stored.
    """

    __tablename__ = "expense_item"
    id: Optional[int] = Field(default=None, primary_key=True)
    book_id: int = Field(index=True, foreign_key="travel_book.id")

    date: dt.date = Field(index=True)
    time_range: Optional[str] = None  # "HH:MM-HH:MM"
    duration_minutes: Optional[int] = None  # derived from time_range
    duration_display: Optional[str] = None  # free text, kept as entered

    title: str
    amount: float  # MVP: float, same as the rest of the ledger
    discount_amount: float = Field(default=0)
    discount_note: Optional[str] = None
    currency: str = Field(default="CNY")

    vehicle_no: Optional[str] = None  # train / flight number, TRANSPORT only
    pay_channel: Optional[str] = Field(default=None, index=True)
    category: str = Field(index=True)
    remark: Optional[str] = None

    created_at: dt.datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: dt.datetime = Field(default_factory=utcnow, sa_type=DateTime)


class ExpenseAttachment(SQLModel, table=True):
    __tablename__ = "expense_attachment"
    id: Optional[int] = Field(default=None, primary_key=True)
    expense_id: int = Field(index=True, foreign_key="expense_item.id")
    file_name: str = Field(index=True)  # random 32-hex name on disk
    original_name: Optional[str] = None
    mime_type: Optional[str] = None
    size_bytes: int = Field(default=0)
    created_at: dt.datetime = Field(default_factory=utcnow, sa_type=DateTime)


class PaymentChannel(SQLModel, table=True):
    """User-defined channel codes and labels layered over the built-in set."""

    __tablename__ = "payment_channel"
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="user.id")
    value: str = Field(max_length=50)  # always upper-case
    label: str = Field(max_length=100)
    created_at: dt.datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: dt.datetime = Field(default_factory=utcnow, sa_type=DateTime)

    __table_args__ = (
        UniqueConstraint("user_id", "value", name="uq_payment_channel_user_value"),
    )


class BookPreview(SQLModel, table=True):
    """
    Read-only share grant for one book.
    Enabled while enabled_until is in the future; disabling moves it into the
    past so the secret survives the toggle.
    """

    __tablename__ = "book_preview"
    book_id: int = Field(primary_key=True, foreign_key="travel_book.id")
    user_id: int = Field(index=True, foreign_key="user.id")
    secret: Optional[str] = Field(default=None, index=True)
    enabled_until: dt.datetime = Field(sa_type=DateTime)
    show_receipts: bool = Field(default=False)
    created_at: dt.datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: dt.datetime = Field(default_factory=utcnow, sa_type=DateTime)
