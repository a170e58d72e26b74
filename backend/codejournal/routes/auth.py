"""
Code Journal Backend — Authentication Routes
=============================================

What:  Public registration and login.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from codejournal.database import get_db_session
from codejournal.schemas.common import ErrorResponse
from codejournal.schemas.user import (
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    RegisterResponse,
)
from codejournal.services.user_service import user_service

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post(
    "/register",
    response_model=RegisterResponse,
    responses={
        400: {"description": "Invalid fields", "model": ErrorResponse},
        409: {"description": "Email already registered", "model": ErrorResponse},
    },
    summary="Register a user",
)
async def register(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db_session),
) -> RegisterResponse:
    global_user = await user_service.register(
        db,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        phone_number=body.phone_number,
        organization=body.organization,
        capabilities=body.capabilities,
    )
    return RegisterResponse(user_id=global_user.id)


@router.post(
    "/login",
    response_model=LoginResponse,
    responses={401: {"description": "Bad credentials", "model": ErrorResponse}},
    summary="Log in and receive an access token",
)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db_session),
) -> LoginResponse:
    user_id, token = await user_service.login(db, body.email, body.password)
    return LoginResponse(user_id=user_id, access_token=token)
