"""Registration, login and the current-user endpoint."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ..auth import login_user, register_user
from ..errors import AuthError
from ..models import LoginRequest, LoginResponse, User, UserCreate
from .helpers import get_current_user

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", response_model=User, status_code=201)
def register(request: UserCreate) -> User:
    try:
        return register_user(request.email, request.password)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/login", response_model=LoginResponse)
def login(request: LoginRequest) -> LoginResponse:
    try:
        return login_user(request.email, request.password)
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))


@router.get("/me", response_model=User)
def me(user: User = Depends(get_current_user)) -> User:
    return user
