"""Authentication schemas."""
from pydantic import EmailStr, Field, field_validator

from . import CamelModel
from ..core.security import UserRole


class UserSignup(CamelModel):
    """User registration request."""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    role: UserRole

    @field_validator("first_name", "last_name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class UserLogin(CamelModel):
    """User login request."""
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class UserResponse(CamelModel):
    """User response without sensitive data."""
    id: int
    email: str
    first_name: str
    last_name: str
    role: UserRole


class AuthResponse(CamelModel):
    message: str
    token: str
    user: UserResponse


class VerifyResponse(CamelModel):
    valid: bool = True
    user: UserResponse


class MessageResponse(CamelModel):
    message: str
