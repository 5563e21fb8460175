from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from cardshop.core.config import Settings
from cardshop.core.db import get_db
from cardshop.core.deps import get_current_user, get_settings
from cardshop.core.security import verify_password_async, create_access_token
from cardshop.models.user import User
from cardshop.schemas.auth import MeResponse, TokenOut
from cardshop.services.reservations import normalize_email

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenOut)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    # the OAuth2 form calls it username; admins sign in with their email
    email = normalize_email(form_data.username)
    password = form_data.password

    res = await db.execute(select(User).where(User.email == email))
    user = res.scalar_one_or_none()

    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")

    if not user.is_active:
        raise HTTPException(status_code=401, detail="User is inactive")

    if not await verify_password_async(password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    access_token = create_access_token(settings, user_id=user.id, role=user.role)

    return {
        "access_token": access_token,
        "token_type": "bearer",
    }


@router.get("/me", response_model=MeResponse)
async def me(current_user: User = Depends(get_current_user)):
    return MeResponse(
        id=current_user.id,
        email=current_user.email,
        name=current_user.name,
        role=current_user.role,
    )
