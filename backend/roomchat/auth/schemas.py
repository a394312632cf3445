"""Pydantic schemas for registration and login."""
from typing import Optional

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    email: Optional[str] = None


class LoginRequest(BaseModel):
    username: str
    password: str


class UserPublic(BaseModel):
    id: str
    username: str
    email: Optional[str] = None


class AuthResponse(BaseModel):
    token: str
    user: UserPublic


class UserStatus(BaseModel):
    id: str
    username: str
    isOnline: bool
