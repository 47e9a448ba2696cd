import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, Response
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

import config
from database import get_db, sanitize, to_obj_id

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=config.BCRYPT_ROUNDS)

COOKIE_NAME = "access_token"
MIN_PASSWORD_LENGTH = 6
MAX_LOGIN_ATTEMPTS = 5
LOCK_DURATION = timedelta(hours=2)

SENSITIVE_FIELDS = ("password", "passwordResetToken", "passwordResetExpires")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MOBILE_RE = re.compile(r"^(\+880|880|0)?1[3-9]\d{8}$")


def verify_password_policy(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def hash_password(password: str) -> str:
    verify_password_policy(password)
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not password or not hashed:
        return False
    return pwd_context.verify(password, hashed)


def validate_email(email: str) -> str:
    email = (email or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise HTTPException(status_code=400, detail="Invalid email format")
    return email


def validate_mobile(mobile: Optional[str]) -> Optional[str]:
    mobile = (mobile or "").strip()
    if not mobile:
        return None
    if not MOBILE_RE.match(mobile):
        raise HTTPException(status_code=400, detail="Please provide a valid Bangladesh mobile number")
    return mobile


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=config.ACCESS_TOKEN_EXPIRE_DAYS))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def token_for_user(user: Dict) -> str:
    return create_access_token({"id": str(user["_id"]), "email": user["email"], "role": user.get("role", "user")})


def set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        COOKIE_NAME,
        token,
        httponly=True,
        secure=config.COOKIE_SECURE,
        samesite="strict",
        max_age=config.ACCESS_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
    )


def clear_auth_cookie(response: Response) -> None:
    response.delete_cookie(COOKIE_NAME)


def public_user(user: Dict) -> Dict:
    """User document without secrets, ready for a JSON response."""
    return sanitize({k: v for k, v in user.items() if k not in SENSITIVE_FIELDS})


def is_admin(user: Dict) -> bool:
    return user.get("role") == "admin"


def requires_two_factor(user: Dict) -> bool:
    email = (user.get("email") or "").lower()
    return is_admin(user) or bool(config.ADMIN_EMAIL and email == config.ADMIN_EMAIL) or bool(user.get("twoFactorEnabled"))


def extract_token(request: Request) -> Optional[str]:
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return token
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth.split(" ", 1)[1].strip() or None
    return None


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=403, detail="Forbidden: Invalid or expired token")


def _load_user(db: Database, payload: Dict[str, Any]) -> Dict:
    user_id = payload.get("id")
    if not user_id:
        raise HTTPException(status_code=403, detail="Forbidden: Invalid or expired token")
    user = db["user"].find_one({"_id": to_obj_id(user_id)})
    if not user:
        raise HTTPException(status_code=401, detail="User no longer exists")
    if not user.get("isActive", True):
        raise HTTPException(status_code=403, detail="Account is deactivated")
    return user


def get_current_user(request: Request, db: Database = Depends(get_db)) -> Dict:
    token = extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized: No token provided")
    return _load_user(db, decode_token(token))


def get_optional_user(request: Request, db: Database = Depends(get_db)) -> Optional[Dict]:
    token = extract_token(request)
    if not token:
        return None
    try:
        return _load_user(db, decode_token(token))
    except HTTPException:
        return None


async def require_admin(current_user: Dict = Depends(get_current_user)) -> Dict:
    if not is_admin(current_user):
        raise HTTPException(status_code=403, detail="Admin access required")
    return current_user
