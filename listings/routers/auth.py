import uuid
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from listings.config import settings
from listings.database import get_session
from listings.dependencies.auth import BLOCKED_STATUSES, get_current_user
from listings.dependencies.rate_limit import login_limiter, register_limiter
from listings.models.base import utcnow
from listings.models.user import User, UserRole, UserStatus, default_agent_profile
from listings.schemas.admin import UserResponse
from listings.schemas.auth import ChangePasswordRequest, RegisterRequest, ResetConfirm, ResetRequest, TokenResponse
from listings.schemas.common import ApiResponse
from listings.security import (
    create_access_token, generate_reset_token, hash_password, is_valid_phone, normalize_phone, password_problem,
    verify_password,
)

logger = get_logger()
router = APIRouter(prefix="/api/auth", tags=["auth"])


def _token_response(user: User) -> TokenResponse:
    token = create_access_token(user_id=str(user.id), role=user.role)
    return TokenResponse(
        access_token=token,
        user=UserResponse.model_validate(user).model_dump(mode="json", by_alias=True),
    )


async def _register(session: AsyncSession, data: RegisterRequest, role: UserRole, status: UserStatus) -> User:
    if not is_valid_phone(data.phone):
        raise HTTPException(status_code=400, detail="Invalid phone number")
    phone = normalize_phone(data.phone)
    problem = password_problem(data.password, phone)
    if problem:
        raise HTTPException(status_code=400, detail=problem)

    existing = await session.scalar(select(User).where(User.phone == phone))
    if existing is not None:
        raise HTTPException(status_code=409, detail="Phone number already registered")

    user = User(
        full_name=data.full_name,
        phone=phone,
        password_hash=hash_password(data.password),
        role=role.value,
        status=status.value,
        agent_profile=default_agent_profile() if role is UserRole.AGENT else None,
    )
    session.add(user)
    await session.commit()
    logger.info("Registered user", user_id=str(user.id), role=role.value)
    return user


@router.post("/register", status_code=201, response_model=ApiResponse[UserResponse], dependencies=[Depends(register_limiter)])
async def register(data: RegisterRequest, session: AsyncSession = Depends(get_session)):
    user = await _register(session, data, UserRole.USER, UserStatus.ACTIVE)
    return ApiResponse(data=UserResponse.model_validate(user), message="Account created")


@router.post("/register-agent", status_code=201, response_model=ApiResponse[UserResponse], dependencies=[Depends(register_limiter)])
async def register_agent(data: RegisterRequest, session: AsyncSession = Depends(get_session)):
    user = await _register(session, data, UserRole.AGENT, UserStatus.PENDING_VERIFICATION)
    return ApiResponse(data=UserResponse.model_validate(user), message="Agent account pending verification")


@router.post("/login", response_model=TokenResponse, dependencies=[Depends(login_limiter)])
async def login(form_data: OAuth2PasswordRequestForm = Depends(), session: AsyncSession = Depends(get_session)):
    phone = normalize_phone(form_data.username)
    user = await session.scalar(select(User).where(User.phone == phone).with_for_update())
    if user is None:
        logger.warning("Login for unknown phone")
        raise HTTPException(status_code=401, detail="Invalid phone or password")
    if not verify_password(form_data.password, user.password_hash):
        user.login_attempts = (user.login_attempts or 0) + 1
        await session.commit()
        logger.warning("Login failed", user_id=str(user.id), attempts=user.login_attempts)
        raise HTTPException(status_code=401, detail="Invalid phone or password")
    if user.status in BLOCKED_STATUSES:
        raise HTTPException(status_code=403, detail=f"Account is {user.status}")

    user.login_attempts = 0
    user.last_login = utcnow()
    await session.commit()
    logger.info("User logged in", user_id=str(user.id), role=user.role)
    return _token_response(user)


@router.get("/me", response_model=ApiResponse[UserResponse])
async def me(user: User = Depends(get_current_user)):
    return ApiResponse(data=UserResponse.model_validate(user))


# ---------- password reset ----------

RESET_REQUESTED = "If an account with this phone number exists, a reset code has been sent."


@router.post("/request-reset", response_model=ApiResponse[dict], dependencies=[Depends(login_limiter)])
async def request_reset(data: ResetRequest, session: AsyncSession = Depends(get_session)):
    if not is_valid_phone(data.phone):
        raise HTTPException(status_code=400, detail="Invalid phone number")
    user = await session.scalar(select(User).where(User.phone == normalize_phone(data.phone)).with_for_update())
    if user is None:
        logger.info("Password reset requested for unknown phone")
        return ApiResponse(data={}, message=RESET_REQUESTED)

    token = generate_reset_token()
    user.password_reset_token_hash = hash_password(token)
    user.password_reset_expires = utcnow() + timedelta(minutes=settings.PASSWORD_RESET_MINUTES)
    await session.commit()
    logger.info("Password reset token issued", user_id=str(user.id))
    # TODO: deliver the token by SMS once a provider is configured.
    if settings.EXPOSE_RESET_TOKEN:
        return ApiResponse(data={"userId": str(user.id), "resetToken": token}, message=RESET_REQUESTED)
    return ApiResponse(data={}, message=RESET_REQUESTED)


@router.post("/confirm-reset", response_model=TokenResponse, dependencies=[Depends(login_limiter)])
async def confirm_reset(data: ResetConfirm, session: AsyncSession = Depends(get_session)):
    try:
        user = await session.get(User, uuid.UUID(data.user_id), with_for_update=True)
    except ValueError:
        user = None
    if user is None or not user.password_reset_token_hash or not user.password_reset_expires:
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")
    if user.password_reset_expires < utcnow():
        raise HTTPException(status_code=400, detail="Reset token has expired. Please request a new one.")
    if not verify_password(data.token, user.password_reset_token_hash):
        logger.warning("Invalid password reset token", user_id=str(user.id))
        raise HTTPException(status_code=400, detail="Invalid reset token")
    problem = password_problem(data.new_password, user.phone)
    if problem:
        raise HTTPException(status_code=400, detail=problem)
    if user.status in BLOCKED_STATUSES:
        raise HTTPException(status_code=403, detail=f"Account is {user.status}")

    now = utcnow()
    user.password_hash = hash_password(data.new_password)
    user.password_changed_at = now
    user.password_reset_token_hash = None
    user.password_reset_expires = None
    user.login_attempts = 0
    user.last_login = now
    await session.commit()
    logger.info("Password reset completed", user_id=str(user.id))
    return _token_response(user)


@router.post("/change-password", response_model=ApiResponse[dict])
async def change_password(
    data: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    if not verify_password(data.old_password, user.password_hash):
        logger.warning("Password change with wrong current password", user_id=str(user.id))
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    problem = password_problem(data.new_password, user.phone)
    if problem:
        raise HTTPException(status_code=400, detail=problem)
    if data.new_password == data.old_password:
        raise HTTPException(status_code=400, detail="New password must differ from the current one")

    user.password_hash = hash_password(data.new_password)
    user.password_changed_at = utcnow()
    user.password_reset_token_hash = None
    user.password_reset_expires = None
    await session.commit()
    logger.info("Password changed", user_id=str(user.id))
    return ApiResponse(data={"userId": str(user.id)}, message="Password changed successfully")
