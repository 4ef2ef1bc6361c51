"""
auth.py — Accounts and the bearer-token dependencies.

  POST /auth/register   email + password (+ display name / phone) → JWT
  POST /auth/login      email + password → JWT
  GET  /auth/me         the signed-in user

Everything else in the API only needs two things about the caller: a
stable id to scope documents by, and a name to put in messages sent to
contacts. Routes get both from the CurrentUser dependency. Safe-place
browsing also works for guests and uses OptionalUser, which yields None
instead of failing with 401.

The WebSocket stream cannot send headers, so user_from_token() is
exposed for it to call with the token from the query string.
"""

from datetime import datetime, timezone
from typing import Annotated, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from safehaven.core.database import get_db, require_db
from safehaven.core.security import (
    create_access_token,
    decode_access_token,
    hash_password,
    verify_password,
)
from safehaven.models.user import (
    LoginRequest,
    SafetyPreferences,
    Token,
    UserCreate,
    UserOut,
)

router = APIRouter(prefix="/auth", tags=["auth"])

USERS = "users"

# auto_error=False: a missing header reaches our dependency as None
_bearer = HTTPBearer(auto_error=False)
BearerCredentials = Annotated[Optional[HTTPAuthorizationCredentials], Depends(_bearer)]


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def doc_to_user_out(doc: dict) -> UserOut:
    return UserOut(
        id=str(doc["_id"]),
        email=doc["email"],
        display_name=doc.get("display_name"),
        phone_number=doc.get("phone_number"),
        preferences=SafetyPreferences(**(doc.get("preferences") or {})),
        created_at=doc.get("created_at") or datetime.now(tz=timezone.utc),
    )


def _issue_token(doc: dict) -> Token:
    return Token(access_token=create_access_token(str(doc["_id"])), user=doc_to_user_out(doc))


async def user_from_token(token: Optional[str], db) -> Optional[UserOut]:
    """The active account a JWT belongs to, or None for a bad/expired token."""
    subject = decode_access_token(token) if token else None
    if not subject:
        return None
    db = require_db(db)
    try:
        user_id = ObjectId(subject)
    except InvalidId:
        return None
    doc = await db[USERS].find_one({"_id": user_id, "is_active": True})
    return doc_to_user_out(doc) if doc else None


async def _current_user(credentials: BearerCredentials, db=Depends(get_db)) -> UserOut:
    if credentials is None:
        raise _unauthorized("Not signed in")
    user = await user_from_token(credentials.credentials, db)
    if user is None:
        raise _unauthorized("Invalid or expired token")
    return user


async def _optional_user(credentials: BearerCredentials, db=Depends(get_db)) -> Optional[UserOut]:
    return await user_from_token(credentials.credentials, db) if credentials else None


CurrentUser = Annotated[UserOut, Depends(_current_user)]
OptionalUser = Annotated[Optional[UserOut], Depends(_optional_user)]


# ── Routes ────────────────────────────────────────────────────────────────────

@router.post("/register", response_model=Token, status_code=status.HTTP_201_CREATED)
async def register(payload: UserCreate, db=Depends(get_db)):
    db = require_db(db)
    email = payload.email.lower()
    if await db[USERS].find_one({"email": email}):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An account already exists for this email",
        )

    doc = {
        "email": email,
        "display_name": payload.display_name,
        "phone_number": payload.phone_number,
        "hashed_password": hash_password(payload.password),
        "preferences": SafetyPreferences().model_dump(),
        "is_active": True,
        "created_at": datetime.now(tz=timezone.utc),
    }
    doc["_id"] = (await db[USERS].insert_one(doc)).inserted_id
    return _issue_token(doc)


@router.post("/login", response_model=Token)
async def login(payload: LoginRequest, db=Depends(get_db)):
    db = require_db(db)
    doc = await db[USERS].find_one({"email": payload.email.lower(), "is_active": True})
    # Same answer for unknown email and wrong password
    if doc is None or not verify_password(payload.password, doc["hashed_password"]):
        raise _unauthorized("Incorrect email or password")
    return _issue_token(doc)


@router.get("/me", response_model=UserOut)
async def me(current_user: CurrentUser):
    return current_user
