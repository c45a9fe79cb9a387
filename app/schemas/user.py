from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from app.core.config import get_settings


class RegisterRequest(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=255)
    last_name: str = Field(..., min_length=1, max_length=255)
    company: Optional[str] = Field(None, max_length=255)
    email: EmailStr = Field(..., max_length=255)
    password: str

    @field_validator("first_name", "last_name")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Field cannot be empty")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        min_length = get_settings().PASSWORD_MIN_LENGTH
        if len(v) < min_length:
            raise ValueError(f"Password must be at least {min_length} characters")
        return v

    class Config:
        json_schema_extra = {
            "example": {
                "first_name": "Ada",
                "last_name": "Lovelace",
                "company": "Analytical Engines",
                "email": "ada@example.com",
                "password": "secret1",
            }
        }


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    otp_code: str

    @field_validator("otp_code")
    @classmethod
    def validate_otp_code(cls, v: str) -> str:
        length = get_settings().OTP_LENGTH
        if len(v) != length:
            raise ValueError(f"OTP code must be exactly {length} characters")
        return v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ResendOtpRequest(BaseModel):
    email: EmailStr


class UserPublic(BaseModel):
    id: int
    email: str
    first_name: str
    last_name: str
    company: Optional[str] = None

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    token: str
    user: UserPublic


class MessageResponse(BaseModel):
    message: str
