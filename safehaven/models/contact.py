"""
contact.py — Trusted contact schemas.

Phone numbers are validated loosely: 10 digits (local) or 12 digits
(with a two-digit country code). Formatting characters are allowed on
input and kept as typed; the formatted_phone field is display-only.
"""

import re
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

Relationship = Literal["family", "friend", "colleague", "neighbor", "other"]


def digits_only(phone: str) -> str:
    return re.sub(r"\D", "", phone)


def is_valid_phone_number(phone: str) -> bool:
    return len(digits_only(phone)) in (10, 12)


def format_phone_number(phone: str) -> str:
    """(XXX) XXX-XXXX for 10 digits, +91 XXXXX-XXXXX for 91-prefixed 12 digits."""
    cleaned = digits_only(phone)
    if len(cleaned) == 10:
        return f"({cleaned[:3]}) {cleaned[3:6]}-{cleaned[6:]}"
    if len(cleaned) == 12 and cleaned.startswith("91"):
        return f"+91 {cleaned[2:7]}-{cleaned[7:]}"
    return phone


def _check_phone(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not is_valid_phone_number(value):
        raise ValueError("Phone number must have 10 digits, or 12 with country code")
    return value


class TrustedContactCreate(BaseModel):
    """Payload for POST /api/v1/contacts."""
    name: str = Field(..., min_length=1, max_length=80)
    phone_number: str
    email: Optional[EmailStr] = None
    relationship: Relationship = "other"
    is_primary: bool = False
    notes: Optional[str] = Field(default=None, max_length=300)

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, value):
        return _check_phone(value)


class TrustedContactUpdate(BaseModel):
    """PATCH payload — only provided fields change."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    phone_number: Optional[str] = None
    email: Optional[EmailStr] = None
    relationship: Optional[Relationship] = None
    is_primary: Optional[bool] = None
    notes: Optional[str] = Field(default=None, max_length=300)

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, value):
        return _check_phone(value)


class TrustedContactOut(BaseModel):
    id: str
    name: str
    phone_number: str
    formatted_phone: str
    email: Optional[str] = None
    relationship: Relationship = "other"
    is_primary: bool = False
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    last_verified: Optional[datetime] = None
