# travel_ledger/routers/auth.py
# Register / login / logout on the signed session cookie, plus profile edits.

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlmodel import Session, select

from travel_ledger.db import get_session
from travel_ledger.models import User, utcnow
from travel_ledger.schemas import (
    ChangePasswordIn,
    LoginIn,
    NicknameIn,
    RegisterIn,
    envelope,
    user_public,
)
from travel_ledger.security import (
    hash_password,
    login_session,
    require_admin,
    require_user,
    verify_password,
)

router = APIRouter(prefix="/auth", tags=["auth"])

MAX_NICKNAME_LENGTH = 30
MIN_PASSWORD_LENGTH = 6


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterIn, request: Request, session: Session = Depends(get_session)
):
    email = (body.email or "").strip().lower()
    password = body.password or ""
    if not email or not password:
        raise _bad_request("邮箱和密码不能为空")

    nickname = (body.nickname or "").strip() or None
    if nickname and len(nickname) > MAX_NICKNAME_LENGTH:
        raise _bad_request("昵称长度不能超过30个字符")

    existing = session.exec(select(User).where(User.email == email)).first()
    if existing:
        raise _bad_request("该邮箱已被注册")

    user = User(email=email, hashed_password=hash_password(password), nickname=nickname)
    session.add(user)
    session.commit()
    session.refresh(user)

    # registering also signs in
    login_session(request, user)
    return envelope("注册成功", user_public(user))


@router.post("/login")
def login(body: LoginIn, request: Request, session: Session = Depends(get_session)):
    email = (body.email or "").strip().lower()
    password = body.password or ""
    if not email or not password:
        raise _bad_request("邮箱和密码不能为空")

    user = session.exec(select(User).where(User.email == email)).first()
    # same answer for unknown email and wrong password
    if not user or not verify_password(password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="邮箱或密码错误"
        )

    login_session(request, user)
    return envelope("登录成功", user_public(user))


@router.post("/logout")
def logout(request: Request):
    request.session.clear()
    return envelope("已退出登录")


@router.get("/me")
def me(user: User = Depends(require_user)):
    return envelope("获取用户信息成功", user_public(user))


@router.put("/me/nickname")
def change_nickname(
    body: NicknameIn,
    user: User = Depends(require_user),
    session: Session = Depends(get_session),
):
    nickname = (body.nickname or "").strip()
    if not nickname:
        raise _bad_request("昵称不能为空")
    if len(nickname) > MAX_NICKNAME_LENGTH:
        raise _bad_request("昵称长度不能超过30个字符")

    user.nickname = nickname
    user.updated_at = utcnow()
    session.add(user)
    session.commit()
    session.refresh(user)
    return envelope("修改昵称成功", user_public(user))


@router.put("/change-password")
def change_password(
    body: ChangePasswordIn,
    user: User = Depends(require_user),
    session: Session = Depends(get_session),
):
    current = body.currentPassword or ""
    new = body.newPassword or ""
    if not current or not new:
        raise _bad_request("当前密码和新密码不能为空")
    if len(new) < MIN_PASSWORD_LENGTH:
        raise _bad_request("新密码长度不能少于6位")
    if not verify_password(current, user.hashed_password):
        raise _bad_request("当前密码错误")

    user.hashed_password = hash_password(new)
    user.updated_at = utcnow()
    session.add(user)
    session.commit()
    return envelope("修改密码成功")


@router.get("/admin/ping")
def admin_ping(_admin: User = Depends(require_admin)):
    return envelope("admin ok")
