"""
Auth router: exchanges operator credentials for a bearer token.
"""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from auth import create_access_token, get_current_user, verify_password
from database import get_db
from errors import AuthenticationError, ValidationError
from models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])


class LoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


@router.post("/login")
async def login(request: LoginRequest, db: Session = Depends(get_db)):
    if not request.username or not request.password:
        raise ValidationError("Please provide username and password.")

    user = db.query(User).filter(User.username == request.username).first()
    if user is None or not await asyncio.to_thread(verify_password, request.password, user.password_hash):
        logger.warning("[AUTH] Failed login for %s", request.username)
        raise AuthenticationError("Invalid credentials.")

    logger.info("[AUTH] User %s logged in", user.username)
    return {
        "access_token": create_access_token(user),
        "token_type": "bearer",
        "user": user.to_dict(),
    }


@router.get("/me")
async def get_me(user: User = Depends(get_current_user)):
    return user.to_dict()
