# tests/test_import_export.py
import io

import pytest

from fastapi.testclient import TestClient
from openpyxl import Workbook, load_workbook
from sqlmodel import select

from conftest import BOOK_HEADER, EXPENSE_HEADER, expense_row, make_workbook, register
from travel_ledger.models import Book, ExpenseItem
from travel_ledger.services import importer
from travel_ledger.services.importer import ImportFailedError, import_workbook

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _post_xlsx(client, data, name="import.xlsx"):
    files = {"file": (name, data, XLSX)}
    return client.post("/books/import", files=files)


def test_import_requires_login(client: TestClient):
    r = _post_xlsx(client, make_workbook(["Trip A"], [expense_row()]))
    assert r.status_code == 401
    assert r.json() == {"error": "访问被拒绝，请先登录"}


def test_trip_a_partial_success(client: TestClient):
    register(client)
    data = make_workbook(
        ["Trip A", "", "", ""],
        [
            expense_row(),  # row 2: valid
            expense_row(amount=-5),  # row 3: bad amount
            [None] * 13,  # row 4: blank
        ],
    )
    r = _post_xlsx(client, data)
    assert r.status_code == 200
    body = r.json()
    assert body["message"] == "导入成功"
    result = body["data"]
    assert result["bookName"] == "Trip A"
    assert result["created"] is True
    assert result["insertedCount"] == 1
    assert result["skippedCount"] == 1
    assert result["errors"] == [{"row": 3, "error": "金额不合法"}]

    listed = client.get(f"/books/{result['bookId']}/expenses").json()["data"]
    assert listed["pagination"]["total"] == 1
    item = listed["items"][0]
    assert item["duration_minutes"] == 85
    assert item["category"] == "TRANSPORT"
    assert item["currency"] == "CNY"


def test_reimport_reuses_book_and_duplicates_rows(client: TestClient):
    register(client)
    data = make_workbook(["Trip A"], [expense_row(), expense_row(title="午餐", category="餐饮", vehicle_no="")])

    first = _post_xlsx(client, data).json()["data"]
    second = _post_xlsx(client, data).json()["data"]

    assert first["created"] is True
    assert second["created"] is False
    assert second["bookId"] == first["bookId"]
    assert second["insertedCount"] == 2

    books = client.get("/books").json()["data"]
    assert len(books) == 1
    listed = client.get(f"/books/{first['bookId']}/expenses").json()["data"]
    assert listed["pagination"]["total"] == 4


def test_row_checks_in_order(client: TestClient):
    register(client)
    data = make_workbook(
        ["Trip B"],
        [
            expense_row(title=""),  # 2
            expense_row(time_range="morning"),  # 3
            expense_row(discount=-1),  # 4
            expense_row(amount=100, discount=150),  # 5
            expense_row(time_range="10:00-09:00"),  # 6
            expense_row(vehicle_no=""),  # 7: transport, no vehicle number
            expense_row(pay_channel="PAYPAL"),  # 8
            expense_row(amount=80, discount=80, pay_channel="支付宝"),  # 9: net zero is fine
            expense_row(category="飞机"),  # 10
        ],
    )
    result = _post_xlsx(client, data).json()["data"]

    assert result["errors"] == [
        {"row": 2, "error": "日期/时间段/项目描述/金额/分类为必填项"},
        {"row": 3, "error": "日期/时间段/项目描述/金额/分类为必填项"},
        {"row": 4, "error": "优惠金额不合法"},
        {"row": 5, "error": "优惠金额不能大于金额"},
        {"row": 6, "error": "时间段格式不合法"},
        {"row": 7, "error": "交通分类需填写车次/航班号"},
        {"row": 8, "error": "支付渠道不合法"},
        {"row": 10, "error": "日期/时间段/项目描述/金额/分类为必填项"},
    ]
    assert result["insertedCount"] == 1
    assert result["skippedCount"] == 8


def test_import_accepts_custom_channel_label(client: TestClient):
    register(client)
    r = client.post("/payment-channels", json={"value": "ccb", "label": "建设银行"})
    assert r.status_code == 201

    data = make_workbook(["Trip C"], [expense_row(pay_channel="建设银行")])
    result = _post_xlsx(client, data).json()["data"]
    assert result["insertedCount"] == 1

    item = client.get(f"/books/{result['bookId']}/expenses").json()["data"]["items"][0]
    assert item["pay_channel"] == "CCB"


def test_structural_errors(client: TestClient):
    register(client)

    r = _post_xlsx(client, b"definitely not a workbook")
    assert r.status_code == 400
    assert r.json()["error"] == "xlsx解析失败，请检查文件格式"

    r = _post_xlsx(client, make_workbook(None, [expense_row()]))
    assert r.status_code == 400
    assert r.json()["error"] == "账本名称不能为空"

    r = client.post("/books/import")
    assert r.status_code == 400
    assert r.json()["error"] == "请上传xlsx文件"

    assert client.get("/books").json()["data"] == []


def test_merge_keeps_stored_values(session, user):
    first = make_workbook(["Trip D", "family trip", "2026-02-10", "2026-02-15"], [])
    import_workbook(session, user.id, first)

    # blanks in the second upload must not erase anything
    second = make_workbook(["Trip D", "", "", "2026/02/16"], [])
    result = import_workbook(session, user.id, second)
    assert result.created is False

    book = session.exec(select(Book).where(Book.name == "Trip D")).one()
    assert book.description == "family trip"
    assert book.start_date.isoformat() == "2026-02-10"
    assert book.end_date.isoformat() == "2026-02-16"


def test_english_headers_any_order(session, user):
    data = make_workbook(
        ["Trip E"],
        [["OTHER", "snacks", 12.5, "14:00-14:20", "2026-03-01"]],
        expense_header=["category", "title", "amount", "time_range", "date"],
    )
    result = import_workbook(session, user.id, data)
    assert result.inserted_count == 1

    item = session.exec(select(ExpenseItem)).one()
    assert item.title == "snacks"
    assert item.amount == 12.5
    assert item.duration_minutes == 20
    assert item.date.isoformat() == "2026-03-01"


def test_template_download_is_importable_layout(client: TestClient):
    register(client)
    r = client.get("/books/import/template")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith(XLSX)
    assert "filename*=UTF-8''" in r.headers["content-disposition"]

    wb = load_workbook(io.BytesIO(r.content))
    assert wb.sheetnames == ["说明", "账本", "花销"]

    # the sample rows import cleanly
    result = _post_xlsx(client, r.content).json()["data"]
    assert result["insertedCount"] == 1
    assert result["errors"] == []


def test_export_orders_recent_first_with_labels(client: TestClient):
    register(client)
    client.post("/payment-channels", json={"value": "ALIPAY", "label": "支付宝花呗"})
    data = make_workbook(
        ["Trip F"],
        [
            expense_row(date="2026-02-10", time_range="08:00-09:00", title="early", pay_channel="ALIPAY"),
            expense_row(date="2026-02-11", time_range="07:00-08:00", title="next day"),
            expense_row(date="2026-02-10", time_range="18:00-19:00", title="late", category="餐饮", vehicle_no=""),
        ],
    )
    book_id = _post_xlsx(client, data).json()["data"]["bookId"]

    r = client.get(f"/books/{book_id}/export")
    assert r.status_code == 200
    assert "Trip%20F-export.xlsx" in r.headers["content-disposition"]

    ws = load_workbook(io.BytesIO(r.content))["花销"]
    rows = list(ws.iter_rows(min_row=2, values_only=True))
    assert [row[4] for row in rows] == ["next day", "late", "early"]
    # pay channel and category rendered as labels
    assert rows[2][10] == "支付宝花呗"
    assert rows[1][10] == "其他"
    assert rows[1][11] == "餐饮"
    assert rows[0][11] == "交通"


def test_export_other_users_book_is_404(client: TestClient):
    register(client)
    book_id = _post_xlsx(client, make_workbook(["Mine"], [])).json()["data"]["bookId"]
    client.post("/auth/logout")
    register(client, email="other@test.com")

    r = client.get(f"/books/{book_id}/export")
    assert r.status_code == 404
    assert r.json() == {"error": "账本不存在或无权访问"}


def test_export_filename_escapes_slash(client: TestClient):
    register(client)
    book_id = client.post("/books", json={"name": "A/B"}).json()["data"]["id"]

    disposition = client.get(f"/books/{book_id}/export").headers["content-disposition"]
    assert 'filename="A%2FB-export.xlsx"' in disposition
    assert "A/B" not in disposition


def _sheets_workbook(sheets):
    """{sheet title: rows} -> xlsx bytes, sheets in the given order."""
    wb = Workbook()
    wb.remove(wb.active)
    for title, rows in sheets.items():
        ws = wb.create_sheet(title)
        for r in rows:
            ws.append(list(r))
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def test_unnamed_sheet_serves_as_book_and_expenses(session, user):
    # one "Sheet1": row 2 holds both the book name and an expense
    data = _sheets_workbook(
        {"Sheet1": [BOOK_HEADER + EXPENSE_HEADER, ["Trip S", "", "", ""] + expense_row()]}
    )
    result = import_workbook(session, user.id, data)

    assert result.book_name == "Trip S"
    assert result.created is True
    assert result.inserted_count == 1
    assert result.errors == []


def test_english_sheet_names(session, user):
    data = _sheets_workbook(
        {
            "Expenses": [EXPENSE_HEADER, expense_row(), expense_row(title="")],
            "Book": [BOOK_HEADER, ["Trip G", "english sheets", "", ""]],
        }
    )
    result = import_workbook(session, user.id, data)

    assert result.book_name == "Trip G"
    assert result.inserted_count == 1
    assert result.skipped_count == 1
    book = session.exec(select(Book).where(Book.name == "Trip G")).one()
    assert book.description == "english sheets"


def _fail_on_second_row(monkeypatch):
    real_check = importer.check_expense_row
    calls = []

    def flaky(*args, **kwargs):
        calls.append(1)
        if len(calls) == 2:
            raise RuntimeError("disk full")
        return real_check(*args, **kwargs)

    monkeypatch.setattr(importer, "check_expense_row", flaky)


def test_failure_mid_import_rolls_back_everything(session, user, monkeypatch):
    _fail_on_second_row(monkeypatch)
    data = make_workbook(["Trip R"], [expense_row(), expense_row(title="午餐")])

    with pytest.raises(ImportFailedError):
        import_workbook(session, user.id, data)

    # neither the new book nor the first row survived
    assert session.exec(select(Book)).all() == []
    assert session.exec(select(ExpenseItem)).all() == []


def test_failure_mid_import_is_generic_500(client: TestClient, monkeypatch):
    register(client)
    _fail_on_second_row(monkeypatch)
    data = make_workbook(["Trip R"], [expense_row(), expense_row(title="午餐")])

    r = _post_xlsx(client, data)
    assert r.status_code == 500
    assert r.json() == {"error": "导入失败"}
    assert client.get("/books").json()["data"] == []
