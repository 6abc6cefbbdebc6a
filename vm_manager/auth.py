"""Password hashing, login and session tokens for the control panel."""
from __future__ import annotations

import re
import uuid
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt

from .config import get_settings
from .errors import AuthError
from .models import LoginResponse, User, UserRole
from .storage import count_users, get_user, get_user_credentials, save_user

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6
JWT_ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=10)).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def register_user(email: str, password: str) -> User:
    """Create a user. The very first account becomes the admin."""
    email = (email or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise ValueError("Invalid email")
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    role = UserRole.ADMIN if count_users() == 0 else UserRole.USER
    user = User(id=str(uuid.uuid4()), email=email, role=role, created_at=datetime.now(timezone.utc))
    save_user(user, hash_password(password))
    return user


def create_token(user: User) -> str:
    settings = get_settings()
    claims = {
        "sub": user.id,
        "email": user.email,
        "role": user.role.value,
        "exp": datetime.now(timezone.utc) + timedelta(days=settings.jwt_expiry_days),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def login_user(email: str, password: str) -> LoginResponse:
    if not email or not password:
        raise AuthError("Email and password are required")
    found = get_user_credentials(email)
    if found is None or not check_password(password, found[1]):
        raise AuthError("Invalid email or password")
    user = found[0]
    return LoginResponse(token=create_token(user), user=user)


def verify_token(token: str) -> User:
    try:
        claims = jwt.decode(token, get_settings().jwt_secret, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        raise AuthError("Invalid or expired token") from e
    user = get_user(claims.get("sub", ""))
    if user is None:
        raise AuthError("User no longer exists")
    return user
