from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from jose import JWTError, jwt
from passlib.context import CryptContext

USERS = "users"
JWT_ALG = "HS256"
TOKEN_TTL = timedelta(days=7)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def create_token(user: dict, secret: str) -> str:
    payload = {
        "sub": str(user["id"]),
        "email": user.get("email"),
        "role": user.get("role", "user"),
        "exp": datetime.now(timezone.utc) + TOKEN_TTL,
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALG)


def public_user(user: dict) -> dict:
    return {
        "id": user["id"],
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role", "user"),
    }


def get_current_user(request: Request, authorization: Optional[str] = Header(None)):
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    token = authorization.replace("Bearer ", "").strip()
    try:
        payload = jwt.decode(token, request.app.state.settings.jwt_secret, algorithms=[JWT_ALG])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    user_id = payload.get("sub")
    user = request.app.state.store.get(USERS, user_id) if user_id else None
    if not user:
        raise HTTPException(status_code=401, detail="Invalid token user")
    return user


def require_admin(user=Depends(get_current_user)):
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin only")
    return user


def require_admin_secret(request: Request, x_admin_secret: Optional[str] = Header(None)):
    expected = request.app.state.settings.admin_secret
    if not expected or x_admin_secret != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")
