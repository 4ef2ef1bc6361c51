"""
user.py — Pydantic schemas for user-related request / response bodies.

  UserCreate          — what the client sends to register
  UserOut             — what the API returns (never includes hashed_password)
  Token               — JWT response from /auth/login and /auth/register
  SafetyPreferences / SafetyPreferencesUpdate — preferences sub-document
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from safehaven.models.contact import is_valid_phone_number


# ── Preferences ───────────────────────────────────────────────────────────────

class SafetyPreferences(BaseModel):
    """Per-user SOS and check-in defaults stored as a sub-document in MongoDB."""
    sos_mode: Literal["silent", "loud", "smart"] = "loud"
    countdown_seconds: int = Field(default=5, ge=0, le=10)
    default_check_minutes: int = Field(default=30, ge=1, le=1440)
    share_battery_level: bool = True
    selected_contact_ids: list[str] = Field(default_factory=list)  # empty = all contacts

    def shared_battery(self, level: Optional[int]) -> Optional[int]:
        return level if self.share_battery_level else None


class SafetyPreferencesUpdate(BaseModel):
    """Partial update — all fields optional (PATCH semantics)."""
    sos_mode: Optional[Literal["silent", "loud", "smart"]] = None
    countdown_seconds: Optional[int] = Field(default=None, ge=0, le=10)
    default_check_minutes: Optional[int] = Field(default=None, ge=1, le=1440)
    share_battery_level: Optional[bool] = None
    selected_contact_ids: Optional[list[str]] = None


# ── User ──────────────────────────────────────────────────────────────────────

class UserCreate(BaseModel):
    """Payload for POST /auth/register."""
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    display_name: Optional[str] = Field(default=None, max_length=64)
    phone_number: Optional[str] = Field(default=None, max_length=20)

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, value):
        if value is not None and not is_valid_phone_number(value):
            raise ValueError("Phone number must have 10 digits, or 12 with country code")
        return value


class UserOut(BaseModel):
    """Safe user representation — no secrets."""
    id: str
    email: EmailStr
    display_name: Optional[str] = None
    phone_number: Optional[str] = None
    preferences: SafetyPreferences = Field(default_factory=SafetyPreferences)
    created_at: datetime

    @property
    def name_for_messages(self) -> str:
        return self.display_name or "User"


# ── Auth tokens ───────────────────────────────────────────────────────────────

class Token(BaseModel):
    """Response body for successful login / register."""
    access_token: str
    token_type: str = "bearer"
    user: UserOut


class LoginRequest(BaseModel):
    """Payload for POST /auth/login."""
    email: EmailStr
    password: str
