# travel_ledger/services/importer.py
"""
Workbook import: one book + its expense rows from an .xlsx upload.

Plain words:
- Structural problems (not a workbook, no sheets, no book name) reject the
  whole upload before anything is written.
- Each expense row is checked on its own. A bad row is skipped and reported
  with its row number; the rest still go in.
- The book create/merge and every good row are committed together. If the
  database fails half way, nothing from this upload is kept.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlmodel import Session

from travel_ledger.models import Book, ExpenseItem, utcnow
from travel_ledger.normalize import (
    cell_to_string,
    compute_duration_minutes,
    normalize_category,
    parse_date_cell,
    parse_number_cell,
    parse_time_range,
)
from travel_ledger.services.books import find_book_by_name
from travel_ledger.services.channels import BUILTIN_CHANNELS, ChannelRegistry
from travel_ledger.services.workbook import (
    HeaderIndex,
    WorkbookParseError,
    add_table_sheet,
    find_sheet,
    load_workbook_bytes,
    new_workbook,
    row_is_blank,
    workbook_bytes,
)

logger = logging.getLogger("travel_ledger.import")

TEMPLATE_FILENAME = "出行花销导入模板.xlsx"

BOOK_SHEET_NAMES = ("账本", "Book", "book")
EXPENSE_SHEET_NAMES = ("花销", "花费", "Expenses", "expenses")

# field key -> accepted header texts, most specific first
BOOK_HEADERS = {
    "name": ("账本名称*", "账本名称", "name"),
    "description": ("描述", "description"),
    "start_date": ("开始日期(YYYY-MM-DD)", "开始日期", "start_date"),
    "end_date": ("结束日期(YYYY-MM-DD)", "结束日期", "end_date"),
}

EXPENSE_HEADERS = {
    "date": ("日期*(YYYY-MM-DD)", "日期(YYYY-MM-DD)", "日期", "date"),
    "time_range": ("时间段*(HH:mm-HH:mm)", "时间段(HH:mm-HH:mm)", "时间段", "time_range"),
    "duration_display": ("耗时显示", "duration_display"),
    "title": ("项目描述*", "项目描述", "标题", "title"),
    "amount": ("金额*", "金额", "amount"),
    "discount_amount": ("优惠金额", "discount_amount"),
    "discount_note": ("优惠说明", "discount_note"),
    "currency": ("货币(默认CNY)", "货币", "currency"),
    "vehicle_no": ("车次/航班号(交通必填)", "车次/航班号", "vehicle_no"),
    "pay_channel": ("支付渠道(可填中文或代码)", "支付渠道", "pay_channel"),
    "category": ("分类*(可填中文或代码)", "分类(可填中文或代码)", "分类", "category"),
    "remark": ("备注", "remark"),
}

# Row-level reasons, in the order the checks run
ERR_REQUIRED = "日期/时间段/项目描述/金额/分类为必填项"
ERR_AMOUNT = "金额不合法"
ERR_DISCOUNT = "优惠金额不合法"
ERR_DISCOUNT_EXCEEDS = "优惠金额不能大于金额"
ERR_TIME_RANGE = "时间段格式不合法"
ERR_VEHICLE = "交通分类需填写车次/航班号"
ERR_PAY_CHANNEL = "支付渠道不合法"

# Structural reasons
ERR_UNREADABLE = "xlsx解析失败，请检查文件格式"
ERR_SHEETS = "模板不完整，需包含「账本」「花销」两个工作表"
ERR_BOOK_NAME = "账本名称不能为空"


class ImportStructureError(ValueError):
    """The upload can't be imported at all. Nothing was written."""


class ImportFailedError(RuntimeError):
    """Storage failed mid-import. The transaction was rolled back."""


@dataclass
class RowError:
    row: int
    error: str


@dataclass
class ImportResult:
    book_id: int
    book_name: str
    created: bool
    inserted_count: int = 0
    skipped_count: int = 0
    errors: List[RowError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bookId": self.book_id,
            "bookName": self.book_name,
            "created": self.created,
            "insertedCount": self.inserted_count,
            "skippedCount": self.skipped_count,
            "errors": [{"row": e.row, "error": e.error} for e in self.errors],
        }


@dataclass
class BookMeta:
    name: str
    description: str
    start_date: str
    end_date: str


# ---------- Book sheet ----------


def read_book_meta(index: HeaderIndex) -> BookMeta:
    """Book metadata lives in row 2 (row 1 is the header)."""
    meta = BookMeta(
        name=cell_to_string(index.value(2, "name")),
        description=cell_to_string(index.value(2, "description")),
        start_date=parse_date_cell(index.value(2, "start_date")),
        end_date=parse_date_cell(index.value(2, "end_date")),
    )
    if not meta.name:
        raise ImportStructureError(ERR_BOOK_NAME)
    return meta


def _iso_to_date(value: str) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def create_or_merge_book(session: Session, user_id: int, meta: BookMeta) -> Tuple[Book, bool]:
    """
    Reuse the user's book with this name, or create it. On reuse, non-blank
    imported values overwrite; blank ones keep what is stored. Flushed, not committed.
    """
    book = find_book_by_name(session, user_id, meta.name)
    if book is None:
        book = Book(
            user_id=user_id,
            name=meta.name,
            description=meta.description or None,
            start_date=_iso_to_date(meta.start_date),
            end_date=_iso_to_date(meta.end_date),
        )
        session.add(book)
        session.flush()
        return book, True

    book.description = meta.description or book.description or None
    book.start_date = _iso_to_date(meta.start_date) or book.start_date
    book.end_date = _iso_to_date(meta.end_date) or book.end_date
    book.updated_at = utcnow()
    session.add(book)
    session.flush()
    return book, False


# ---------- Expense rows ----------


def check_expense_row(
    values: Dict[str, Any],
    registry: ChannelRegistry,
    *,
    default_currency: str = "CNY",
) -> Union[Dict[str, Any], str]:
    """
    Validate one expense row. Returns the column values to insert, or the
    reason the row is skipped. Checks run in a fixed order; the first failure wins.
    """
    iso_date = parse_date_cell(values.get("date"))
    time_range = cell_to_string(values.get("time_range"))
    title = cell_to_string(values.get("title"))
    amount = parse_number_cell(values.get("amount"))
    category = normalize_category(values.get("category"))

    if (
        not iso_date
        or parse_time_range(time_range) is None
        or not title
        or amount is None
        or not category
    ):
        return ERR_REQUIRED

    if amount < 0:
        return ERR_AMOUNT

    raw_discount = values.get("discount_amount")
    if cell_to_string(raw_discount) == "":
        discount: Optional[float] = 0.0
    else:
        discount = parse_number_cell(raw_discount)
    if discount is None or discount < 0:
        return ERR_DISCOUNT
    if discount > amount:
        return ERR_DISCOUNT_EXCEEDS

    duration = compute_duration_minutes(time_range)
    if duration is None:
        return ERR_TIME_RANGE

    vehicle_no = cell_to_string(values.get("vehicle_no")) or None
    if category == "TRANSPORT" and not vehicle_no:
        return ERR_VEHICLE

    pay_channel = registry.resolve(values.get("pay_channel"))
    if pay_channel and not registry.is_allowed(pay_channel):
        return ERR_PAY_CHANNEL

    return {
        "date": date.fromisoformat(iso_date),
        "time_range": time_range,
        "duration_minutes": duration,
        "duration_display": cell_to_string(values.get("duration_display")) or None,
        "title": title,
        "amount": amount,
        "discount_amount": discount,
        "discount_note": cell_to_string(values.get("discount_note")) or None,
        "currency": cell_to_string(values.get("currency")) or default_currency,
        "vehicle_no": vehicle_no,
        "pay_channel": pay_channel,
        "category": category,
        "remark": cell_to_string(values.get("remark")) or None,
    }


# ---------- Entry point ----------


def import_workbook(
    session: Session,
    user_id: int,
    data: bytes,
    *,
    default_currency: str = "CNY",
) -> ImportResult:
    try:
        wb = load_workbook_bytes(data)
    except WorkbookParseError as ex:
        raise ImportStructureError(ERR_UNREADABLE) from ex

    book_sheet = find_sheet(wb, BOOK_SHEET_NAMES)
    expense_sheet = find_sheet(wb, EXPENSE_SHEET_NAMES)
    if book_sheet is None or expense_sheet is None:
        raise ImportStructureError(ERR_SHEETS)

    meta = read_book_meta(HeaderIndex(book_sheet, BOOK_HEADERS))
    headers = HeaderIndex(expense_sheet, EXPENSE_HEADERS)

    try:
        registry = ChannelRegistry.load(session, user_id)
        book, created = create_or_merge_book(session, user_id, meta)
        result = ImportResult(book_id=book.id, book_name=book.name, created=created)

        for row in range(2, expense_sheet.max_row + 1):
            if row_is_blank(expense_sheet, row):
                continue
            outcome = check_expense_row(
                headers.values(row), registry, default_currency=default_currency
            )
            if isinstance(outcome, str):
                result.skipped_count += 1
                result.errors.append(RowError(row=row, error=outcome))
                continue
            session.add(ExpenseItem(book_id=book.id, **outcome))
            result.inserted_count += 1

        session.commit()
    except Exception as ex:
        session.rollback()
        logger.exception("Import failed for user %s, book %r", user_id, meta.name)
        raise ImportFailedError("导入失败") from ex

    logger.info(
        "Imported book %s (%s): inserted=%d skipped=%d created=%s",
        result.book_id,
        result.book_name,
        result.inserted_count,
        result.skipped_count,
        result.created,
    )
    return result


# ---------- Template ----------

_HELP_COLUMNS = [("工作表", 10), ("字段", 22), ("是否必填", 10), ("说明", 66)]
_HELP_ROWS = [
    ("账本", "账本名称*", "是", "用于识别/匹配账本；若已存在同名账本，则花销会追加到该账本中"),
    ("账本", "描述", "否", "可留空；若导入时填写，则会补全/更新账本描述"),
    ("账本", "开始日期/结束日期", "否", "格式 YYYY-MM-DD；可留空；若导入时填写，则会补全/更新账本日期范围"),
    ("花销", "日期*", "是", "格式 YYYY-MM-DD"),
    ("花销", "时间段*", "是", "格式 HH:mm-HH:mm，结束时间需不早于开始时间；用于自动计算耗时(分钟)"),
    ("花销", "项目描述*", "是", "例如：午餐/景区门票/酒店住宿/网约车"),
    ("花销", "金额*", "是", "非负数字"),
    ("花销", "分类*", "是", "可填中文(交通/住宿/餐饮/门票/购物/其他)或代码(TRANSPORT/HOTEL/FOOD/TICKET/SHOPPING/OTHER)"),
    ("花销", "车次/航班号", "条件必填", "当分类为「交通/TRANSPORT」时必填"),
    ("花销", "优惠金额", "否", "可留空；若填写需为非负数字且不大于金额"),
    (
        "花销",
        "支付渠道",
        "否",
        "可留空；可填中文({})或代码({})".format(
            "/".join(BUILTIN_CHANNELS.values()), "/".join(BUILTIN_CHANNELS.keys())
        ),
    ),
    ("导入规则", "", "", "空行会自动忽略；必填缺失或格式不合法会跳过该行并在返回结果中给出行号与原因"),
]

_BOOK_COLUMNS = [
    ("账本名称*", 24),
    ("描述", 40),
    ("开始日期(YYYY-MM-DD)", 20),
    ("结束日期(YYYY-MM-DD)", 20),
]

_EXPENSE_COLUMNS = [
    ("日期*(YYYY-MM-DD)", 18),
    ("时间段*(HH:mm-HH:mm)", 22),
    ("耗时(分钟)", 12),
    ("耗时显示", 12),
    ("项目描述*", 34),
    ("金额*", 12),
    ("优惠金额", 12),
    ("优惠说明", 18),
    ("货币(默认CNY)", 14),
    ("车次/航班号(交通必填)", 22),
    ("支付渠道(可填中文或代码)", 22),
    ("分类*(可填中文或代码)", 22),
    ("备注", 36),
]


def build_import_template() -> bytes:
    """Three sheets: instructions, one sample book row, one sample expense row."""
    wb = new_workbook()
    add_table_sheet(wb, "说明", _HELP_COLUMNS, _HELP_ROWS)
    add_table_sheet(
        wb,
        "账本",
        _BOOK_COLUMNS,
        [("示例：2026春节出行", "示例：广州-北京往返，全家出行", "2026-02-10", "2026-02-15")],
    )
    add_table_sheet(
        wb,
        "花销",
        _EXPENSE_COLUMNS,
        [
            (
                "2026-02-10",
                "09:10-10:35",
                85,
                "1h25m",
                "高铁票",
                560,
                20,
                "平台券",
                "CNY",
                "G1234",
                "支付宝",
                "交通",
                "二等座",
            )
        ],
    )
    return workbook_bytes(wb)
