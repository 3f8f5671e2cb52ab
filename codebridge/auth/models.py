from pydantic import BaseModel, EmailStr, Field, validator
from typing import Optional
from enum import Enum


class UserRole(str, Enum):
    STUDENT = "student"
    TUTOR = "tutor"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


SELF_REGISTER_ROLES = (UserRole.STUDENT.value, UserRole.TUTOR.value)


class Theme(str, Enum):
    LIGHT = "light"
    DARK = "dark"
    AUTO = "auto"


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    role: str = UserRole.STUDENT.value

    @validator('name')
    def strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Name is required')
        return v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    bio: Optional[str] = Field(None, max_length=500)
    avatar: Optional[str] = None


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6, max_length=128)


class SettingsUpdate(BaseModel):
    email_notifications: Optional[bool] = None
    push_notifications: Optional[bool] = None
    theme: Optional[Theme] = None
    language: Optional[str] = Field(None, min_length=2, max_length=10)

    class Config:
        use_enum_values = True


def default_settings() -> dict:
    return {
        "email_notifications": True,
        "push_notifications": True,
        "theme": Theme.AUTO.value,
        "language": "en"
    }
