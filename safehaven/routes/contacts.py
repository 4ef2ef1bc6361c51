"""
contacts.py — Trusted contact routes.

Routes:
  GET    /api/v1/contacts               — list (primary first, then newest)
  GET    /api/v1/contacts/primary       — the primary contact, or null
  POST   /api/v1/contacts               — add a contact
  PATCH  /api/v1/contacts/{id}          — partial update
  DELETE /api/v1/contacts/{id}          — remove
  POST   /api/v1/contacts/{id}/primary  — make this the only primary contact
  POST   /api/v1/contacts/{id}/verify   — stamp last_verified (test message sent)

All routes require a valid Bearer token and only ever see the caller's
own contacts.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import APIRouter, Depends, HTTPException, Response, status

from safehaven.core.database import get_db
from safehaven.models.contact import (
    TrustedContactCreate,
    TrustedContactOut,
    TrustedContactUpdate,
)
from safehaven.routes.auth import CurrentUser
from safehaven.services.contacts import CONTACTS, doc_to_contact_out, list_contacts

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/contacts", tags=["contacts"])


# ── Helpers ───────────────────────────────────────────────────────────────────

def _require_db(db):
    if db is None:
        raise HTTPException(status_code=503, detail="Database unavailable")
    return db


def _parse_oid(contact_id: str) -> ObjectId:
    try:
        return ObjectId(contact_id)
    except InvalidId:
        raise HTTPException(status_code=404, detail="Contact not found")


async def _get_owned(db, contact_id: str, user_id: str) -> dict:
    doc = await db[CONTACTS].find_one({"_id": _parse_oid(contact_id), "user_id": user_id})
    if not doc:
        raise HTTPException(status_code=404, detail="Contact not found")
    return doc


async def _clear_primary(db, user_id: str) -> None:
    await db[CONTACTS].update_many(
        {"user_id": user_id, "is_primary": True},
        {"$set": {"is_primary": False}},
    )


# ── Routes ────────────────────────────────────────────────────────────────────

@router.get("", response_model=list[TrustedContactOut])
async def get_contacts(current_user: CurrentUser, db=Depends(get_db)):
    docs = await list_contacts(_require_db(db), current_user.id)
    return [doc_to_contact_out(d) for d in docs]


@router.get("/primary", response_model=Optional[TrustedContactOut])
async def get_primary_contact(current_user: CurrentUser, db=Depends(get_db)):
    doc = await _require_db(db)[CONTACTS].find_one({"user_id": current_user.id, "is_primary": True})
    return doc_to_contact_out(doc) if doc else None


@router.post("", response_model=TrustedContactOut, status_code=status.HTTP_201_CREATED)
async def add_contact(payload: TrustedContactCreate, current_user: CurrentUser, db=Depends(get_db)):
    db = _require_db(db)
    if payload.is_primary:
        await _clear_primary(db, current_user.id)

    now = datetime.now(tz=timezone.utc)
    doc = {
        **payload.model_dump(),
        "user_id": current_user.id,
        "created_at": now,
        "updated_at": now,
        "last_verified": None,
    }
    result = await db[CONTACTS].insert_one(doc)
    doc["_id"] = result.inserted_id
    logger.info("Contact %s added for %s", result.inserted_id, current_user.id)
    return doc_to_contact_out(doc)


@router.patch("/{contact_id}", response_model=TrustedContactOut)
async def update_contact(
    contact_id: str,
    payload: TrustedContactUpdate,
    current_user: CurrentUser,
    db=Depends(get_db),
):
    db = _require_db(db)
    doc = await _get_owned(db, contact_id, current_user.id)

    updates = payload.model_dump(exclude_unset=True)
    if updates.get("is_primary"):
        await _clear_primary(db, current_user.id)
    updates["updated_at"] = datetime.now(tz=timezone.utc)

    await db[CONTACTS].update_one({"_id": doc["_id"]}, {"$set": updates})
    return doc_to_contact_out({**doc, **updates})


@router.delete("/{contact_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_contact(contact_id: str, current_user: CurrentUser, db=Depends(get_db)):
    db = _require_db(db)
    doc = await _get_owned(db, contact_id, current_user.id)
    await db[CONTACTS].delete_one({"_id": doc["_id"]})
    logger.info("Contact %s deleted for %s", contact_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{contact_id}/primary", response_model=TrustedContactOut)
async def set_primary_contact(contact_id: str, current_user: CurrentUser, db=Depends(get_db)):
    db = _require_db(db)
    doc = await _get_owned(db, contact_id, current_user.id)
    await _clear_primary(db, current_user.id)

    updates = {"is_primary": True, "updated_at": datetime.now(tz=timezone.utc)}
    await db[CONTACTS].update_one({"_id": doc["_id"]}, {"$set": updates})
    return doc_to_contact_out({**doc, **updates})


@router.post("/{contact_id}/verify", response_model=TrustedContactOut)
async def verify_contact(contact_id: str, current_user: CurrentUser, db=Depends(get_db)):
    db = _require_db(db)
    doc = await _get_owned(db, contact_id, current_user.id)

    now = datetime.now(tz=timezone.utc)
    updates = {"last_verified": now, "updated_at": now}
    await db[CONTACTS].update_one({"_id": doc["_id"]}, {"$set": updates})
    return doc_to_contact_out({**doc, **updates})
