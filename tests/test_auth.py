# tests/test_auth.py
from fastapi.testclient import TestClient
from sqlmodel import select

from conftest import login, register
from travel_ledger.models import Role, User


def test_register_login_logout(client: TestClient):
    user = register(client, email="T@Test.com", nickname="阿明")
    assert user["email"] == "t@test.com"
    assert user["nickname"] == "阿明"
    assert "hashed_password" not in user

    me = client.get("/auth/me")
    assert me.status_code == 200
    assert me.json()["data"]["id"] == user["id"]

    client.post("/auth/logout")
    assert client.get("/auth/me").status_code == 401

    login(client, email="t@test.com")
    assert client.get("/auth/me").status_code == 200


def test_register_rejects_duplicates_and_blanks(client: TestClient):
    register(client)
    r = client.post("/auth/register", json={"email": "t@test.com", "password": "x"})
    assert r.status_code == 400
    assert r.json() == {"error": "该邮箱已被注册"}

    r = client.post("/auth/register", json={"email": "", "password": "x"})
    assert r.status_code == 400
    assert r.json() == {"error": "邮箱和密码不能为空"}


def test_login_wrong_password(client: TestClient):
    register(client)
    client.post("/auth/logout")
    r = client.post("/auth/login", json={"email": "t@test.com", "password": "wrong"})
    assert r.status_code == 401
    assert r.json() == {"error": "邮箱或密码错误"}
    r = client.post("/auth/login", json={"email": "nobody@test.com", "password": "wrong"})
    assert r.json() == {"error": "邮箱或密码错误"}


def test_change_nickname(client: TestClient):
    register(client)
    assert client.put("/auth/me/nickname", json={"nickname": " "}).status_code == 400
    assert client.put("/auth/me/nickname", json={"nickname": "x" * 31}).status_code == 400
    r = client.put("/auth/me/nickname", json={"nickname": "旅行家"})
    assert r.json()["data"]["nickname"] == "旅行家"


def test_change_password(client: TestClient):
    register(client, password="pw123456")
    r = client.put(
        "/auth/change-password",
        json={"currentPassword": "pw123456", "newPassword": "123"},
    )
    assert r.json() == {"error": "新密码长度不能少于6位"}
    r = client.put(
        "/auth/change-password",
        json={"currentPassword": "nope", "newPassword": "newpass1"},
    )
    assert r.json() == {"error": "当前密码错误"}
    r = client.put(
        "/auth/change-password",
        json={"currentPassword": "pw123456", "newPassword": "newpass1"},
    )
    assert r.status_code == 200

    client.post("/auth/logout")
    login(client, password="newpass1")


def test_admin_ping_requires_role(client: TestClient, db_session):
    user = register(client)
    r = client.get("/auth/admin/ping")
    assert r.status_code == 403
    assert r.json() == {"error": "权限不足"}

    row = db_session.exec(select(User).where(User.id == user["id"])).one()
    row.role = Role.admin
    db_session.add(row)
    db_session.commit()

    assert client.get("/auth/admin/ping").json() == {"message": "admin ok"}


def test_healthz(client: TestClient):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.text == "ok"
