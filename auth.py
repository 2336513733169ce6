"""
Authentication routes and dependencies
"""

import logging
import re
from typing import Optional
from fastapi import APIRouter, HTTPException, Header, Depends, Cookie
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth_utils import hash_password, verify_password, create_jwt, decode_jwt, SESSION_MAX_AGE_SECONDS
from backend.auth.access import evaluate
from backend.utils.errors import UnauthenticatedError
from crud.principal import PrincipalRepository
from crud.user import UserRepository
from database import get_db
from services.sticker_service import SYSTEM_STICKER_URLS
from utils.security_utils import validate_password_strength

logger = logging.getLogger(__name__)

# Create auth router
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


# Request models
class SignupRequest(BaseModel):
    email: str
    password: str


class LoginRequest(BaseModel):
    email: str
    password: str


def validate_email(email: str) -> bool:
    """Validate email format"""
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return re.match(pattern, email) is not None


def _session_response(principal_id: str) -> JSONResponse:
    token = create_jwt(principal_id)
    response = JSONResponse(
        content={
            "ok": True,
            "user_id": principal_id,
            "token": token,
        }
    )
    response.set_cookie(
        key="auth_token",
        value=token,
        httponly=True,
        secure=True,
        samesite="Lax",
        max_age=SESSION_MAX_AGE_SECONDS,
    )
    return response


@auth_router.post("/signup")
async def signup(request: SignupRequest, db: AsyncSession = Depends(get_db)):
    """Create a login principal and its account record"""
    if not validate_email(request.email):
        raise HTTPException(status_code=400, detail="Invalid email format")

    try:
        validate_password_strength(request.password)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    principal_repo = PrincipalRepository(db)
    if await principal_repo.get_by_email(request.email):
        raise HTTPException(status_code=400, detail="Email already registered")

    principal = await principal_repo.create(request.email, hash_password(request.password))

    # First sign-in creates the account record; the trial starts later, on the first entry
    await UserRepository(db).create_user(principal.id, stickers=SYSTEM_STICKER_URLS)
    logger.info(f"Created principal and account record {principal.id}")

    return _session_response(principal.id)


@auth_router.post("/login")
async def login(request: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Login and get a session token"""
    principal = await PrincipalRepository(db).get_by_email(request.email)
    if not principal or not verify_password(request.password, principal.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    if not principal.is_active:
        raise HTTPException(status_code=401, detail="User account is inactive")

    # Accounts created before records existed get one on their next login
    user_repo = UserRepository(db)
    if await user_repo.get_user_by_id(principal.id) is None:
        await user_repo.create_user(principal.id, stickers=SYSTEM_STICKER_URLS)

    return _session_response(principal.id)


@auth_router.post("/logout")
async def logout():
    """Logout and clear auth token cookie"""
    response = JSONResponse(
        content={
            "ok": True,
            "message": "Logged out successfully"
        }
    )
    # Clear the auth_token cookie by setting max_age=0
    response.set_cookie(
        key="auth_token",
        value="",
        httponly=True,
        secure=True,
        samesite="Lax",
        max_age=0
    )
    return response


# Dependency for protected routes
async def get_current_user(
    auth_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    Dependency function to get current authenticated user.

    Authentication priority:
    1. Check auth_token cookie first (httpOnly cookie set by login/signup)
    2. Fallback to Authorization header (Bearer token) for API consumers
    3. Raise UnauthenticatedError if neither is found
    """
    token = None
    if auth_token:
        token = auth_token
    elif authorization and authorization.startswith("Bearer "):
        token = authorization.replace("Bearer ", "").strip()

    if not token:
        raise UnauthenticatedError("The function must be called while authenticated.")

    try:
        payload = decode_jwt(token)
    except ValueError as e:
        logger.error(f"Cannot verify session token: {e}")
        raise UnauthenticatedError("Authentication is not configured.")
    if not payload:
        raise UnauthenticatedError("Invalid or expired token")

    principal_id = payload.get("sub")
    if not principal_id:
        raise UnauthenticatedError("Invalid token payload")

    # A deleted principal can no longer act even with an unexpired token
    principal = await PrincipalRepository(db).get_by_id(principal_id)
    if principal is None or not principal.is_active:
        raise UnauthenticatedError("User account is inactive or deleted")

    return {
        "user_id": principal.id,
        "email": principal.email,
    }


@auth_router.get("/me")
async def get_current_user_info(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get current user information and access level"""
    user = await UserRepository(db).get_user_by_id(current_user["user_id"])
    return {
        "ok": True,
        "user_id": current_user["user_id"],
        "email": current_user["email"],
        "access_level": evaluate(user).value,
    }
