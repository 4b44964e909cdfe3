# tests/conftest.py
# Test setup: a fresh app per test on a temporary SQLite file + attachments dir.

import io
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook
from sqlmodel import Session

# Ensure repo root on sys.path so "import travel_ledger" works
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from travel_ledger.config import Settings  # noqa: E402
from travel_ledger.db import build_engine, init_db  # noqa: E402
from travel_ledger.main import create_app  # noqa: E402
from travel_ledger.models import User  # noqa: E402

BOOK_HEADER = ["账本名称*", "描述", "开始日期(YYYY-MM-DD)", "结束日期(YYYY-MM-DD)"]
EXPENSE_HEADER = [
    "日期*(YYYY-MM-DD)",
    "时间段*(HH:mm-HH:mm)",
    "耗时(分钟)",
    "耗时显示",
    "项目描述*",
    "金额*",
    "优惠金额",
    "优惠说明",
    "货币(默认CNY)",
    "车次/航班号(交通必填)",
    "支付渠道(可填中文或代码)",
    "分类*(可填中文或代码)",
    "备注",
]


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        secret_key="test-secret",
        database_url=f"sqlite:///{tmp_path / 'test_app.db'}",
        attachments_dir=str(tmp_path / "attachments"),
    )


@pytest.fixture()
def client(settings: Settings):
    app = create_app(settings)
    with TestClient(app) as c:  # runs the lifespan: engine + init_db
        yield c


@pytest.fixture()
def db_session(client):
    """A session on the same engine the app under test uses."""
    with Session(client.app.state.engine) as s:
        yield s


@pytest.fixture()
def engine():
    # In-memory DB for service-level tests (no HTTP)
    eng = build_engine("sqlite:///:memory:")
    init_db(eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture()
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture()
def user(session) -> User:
    u = User(email="svc@test.com", hashed_password="x")
    session.add(u)
    session.commit()
    session.refresh(u)
    return u


def register(client, email="t@test.com", password="pw123456", nickname=None):
    """Register (which also signs in) and return the user payload."""
    body = {"email": email, "password": password}
    if nickname:
        body["nickname"] = nickname
    r = client.post("/auth/register", json=body)
    assert r.status_code == 201, r.text
    return r.json()["data"]


def login(client, email="t@test.com", password="pw123456"):
    r = client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()["data"]


def make_workbook(book_row=None, expense_rows=(), *, expense_header=None, sheets=None):
    """
    Build an import workbook in memory.
    `sheets` limits which of ("账本", "花销") are created; rows may contain None.
    """
    wb = Workbook()
    wb.remove(wb.active)
    wanted = sheets if sheets is not None else ("账本", "花销")
    if "账本" in wanted:
        ws = wb.create_sheet("账本")
        ws.append(BOOK_HEADER)
        if book_row is not None:
            ws.append(list(book_row))
    if "花销" in wanted:
        ws = wb.create_sheet("花销")
        ws.append(list(expense_header or EXPENSE_HEADER))
        for row in expense_rows:
            ws.append(list(row))
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def expense_row(
    date="2026-02-10",
    time_range="09:10-10:35",
    title="高铁票",
    amount=560,
    discount="",
    category="交通",
    vehicle_no="G1234",
    pay_channel="",
    remark="",
):
    """One row in EXPENSE_HEADER order."""
    return [
        date,
        time_range,
        None,
        None,
        title,
        amount,
        discount,
        None,
        None,
        vehicle_no,
        pay_channel,
        category,
        remark,
    ]


@pytest.fixture()
def xlsx():
    return make_workbook


@pytest.fixture()
def row():
    return expense_row
