"""Auth router for account registration, login and presence status.

Endpoints:
    POST /api/auth/register  - Create an account, returns token + profile
    POST /api/auth/login     - Verify credentials, returns token + profile
    GET  /api/auth/me        - Own public profile
    PUT  /api/auth/status    - Set status (online, busy, away, offline)
    POST /api/auth/logout    - Set status offline
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.services import Services, get_services
from app.store.database import utcnow

from .dependencies import get_current_user
from .schemas import LoginRequest, RegisterRequest, StatusUpdate, UserRecord

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _profile(user: UserRecord) -> dict:
    return user.public_profile(utcnow()).model_dump(mode="json")


@router.post("/register", status_code=201)
async def register(
    body: RegisterRequest,
    services: Services = Depends(get_services),
) -> JSONResponse:
    """Create a new account.

    The username is stored lowercased; the password is stored only as an
    argon2 hash and never returned.

    Returns:
        201 with ``token`` and ``user`` (public profile).
    """
    token, user = services.auth.register(body)
    return JSONResponse(
        {
            "success": True,
            "message": f"Welcome to Neon Chat, {user.username}!",
            "token": token,
            "user": _profile(user),
        },
        status_code=201,
    )


@router.post("/login")
async def login(
    body: LoginRequest,
    services: Services = Depends(get_services),
) -> JSONResponse:
    """Verify credentials and mark the user online."""
    token, user = services.auth.login(body.username, body.password)
    return JSONResponse({
        "success": True,
        "message": f"Welcome back, {user.username}!",
        "token": token,
        "user": _profile(user),
    })


@router.get("/me")
async def me(user: UserRecord = Depends(get_current_user)) -> JSONResponse:
    return JSONResponse({"success": True, "user": _profile(user)})


@router.put("/status")
async def update_status(
    body: StatusUpdate,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> JSONResponse:
    updated = services.auth.update_status(user.id, body.status)
    logger.info("[Auth] %s status -> %s (REST)", updated.username, body.status.value)
    return JSONResponse({
        "success": True,
        "message": f"Status updated to {body.status.value}",
        "user": _profile(updated),
    })


@router.post("/logout")
async def logout(
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> JSONResponse:
    services.auth.logout(user.id)
    return JSONResponse({"success": True, "message": "Logged out successfully! See you soon!"})
