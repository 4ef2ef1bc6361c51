"""
users.py — Safety preference routes.

Routes:
  GET   /users/preferences — fetch current user's SOS / check-in defaults
  PUT   /users/preferences — replace preferences (full update)
  PATCH /users/preferences — partial update

All routes require a valid Bearer token.
"""

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException

from safehaven.core.database import get_db
from safehaven.models.user import SafetyPreferences, SafetyPreferencesUpdate
from safehaven.routes.auth import CurrentUser

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/preferences", response_model=SafetyPreferences)
async def get_preferences(current_user: CurrentUser):
    return current_user.preferences


@router.put("/preferences", response_model=SafetyPreferences)
async def replace_preferences(
    payload: SafetyPreferences,
    current_user: CurrentUser,
    db=Depends(get_db),
):
    """Replace preferences with a full new document."""
    if db is None:
        raise HTTPException(status_code=503, detail="Database unavailable")

    await db["users"].update_one(
        {"_id": ObjectId(current_user.id)},
        {"$set": {"preferences": payload.model_dump()}},
    )
    return payload


@router.patch("/preferences", response_model=SafetyPreferences)
async def patch_preferences(
    payload: SafetyPreferencesUpdate,
    current_user: CurrentUser,
    db=Depends(get_db),
):
    """Partially update preferences; only provided fields are changed."""
    if db is None:
        raise HTTPException(status_code=503, detail="Database unavailable")

    merged = {
        **current_user.preferences.model_dump(),
        **payload.model_dump(exclude_none=True),
    }
    await db["users"].update_one(
        {"_id": ObjectId(current_user.id)},
        {"$set": {"preferences": merged}},
    )
    return SafetyPreferences(**merged)
