from typing import Literal, Optional
from pydantic import EmailStr, Field, field_validator

from .common import CamelModel
from .user import UserOut


class Register(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=72, description="Password must be at least 6 characters")
    first_name: str = Field(..., min_length=1, max_length=80)
    last_name: str = Field(..., min_length=1, max_length=80)
    phone: Optional[str] = Field(None, max_length=20)
    # Los administradores no se registran por la API
    role: Literal["owner", "pilot"] = "owner"

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("first_name", "last_name", "phone", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class Login(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1, description="Password is required")

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class RefreshIn(CamelModel):
    refresh_token: Optional[str] = None


class TokenPair(CamelModel):
    access_token: str
    refresh_token: str


class AuthOut(CamelModel):
    message: str
    user: UserOut
    tokens: TokenPair


class RefreshOut(CamelModel):
    message: str
    tokens: TokenPair
