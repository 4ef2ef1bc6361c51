"""
contacts.py — Trusted contact lookups shared by the contacts routes and
the session features (who gets notified).

Document shape (collection `trusted_contacts`):

  {"_id": ObjectId, "user_id": "665f...", "name": "Mum",
   "phone_number": "+91 98765 43210", "email": null,
   "relationship": "family", "is_primary": true, "notes": null,
   "created_at": ISODate, "updated_at": ISODate, "last_verified": null}
"""

from datetime import datetime, timezone
from typing import Optional

from pymongo.errors import PyMongoError

from safehaven.core.errors import PersistenceError, ValidationError
from safehaven.models.contact import TrustedContactOut, format_phone_number
from safehaven.models.session import Recipient

CONTACTS = "trusted_contacts"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def doc_to_contact_out(doc: dict) -> TrustedContactOut:
    now = datetime.now(tz=timezone.utc)
    return TrustedContactOut(
        id=str(doc["_id"]),
        name=doc["name"],
        phone_number=doc["phone_number"],
        formatted_phone=format_phone_number(doc["phone_number"]),
        email=doc.get("email"),
        relationship=doc.get("relationship", "other"),
        is_primary=doc.get("is_primary", False),
        notes=doc.get("notes"),
        created_at=doc.get("created_at", now),
        updated_at=doc.get("updated_at", now),
        last_verified=doc.get("last_verified"),
    )


async def list_contacts(db, user_id: str) -> list[dict]:
    """All of the user's contacts: primary first, then newest first."""
    try:
        docs = [doc async for doc in db[CONTACTS].find({"user_id": user_id})]
    except PyMongoError as exc:
        raise PersistenceError(f"Could not load contacts: {exc}") from exc
    docs.sort(key=lambda d: d.get("created_at") or _EPOCH, reverse=True)
    docs.sort(key=lambda d: not d.get("is_primary", False))
    return docs


async def resolve_recipients(db, user_id: str, contact_ids: Optional[list[str]] = None) -> list[Recipient]:
    """
    Snapshot the contacts to notify for a new session.

    contact_ids=None selects every contact. Unknown ids are ignored; an
    empty result is a ValidationError.
    """
    docs = await list_contacts(db, user_id)
    if contact_ids is not None:
        wanted = set(contact_ids)
        docs = [d for d in docs if str(d["_id"]) in wanted]
    if not docs:
        raise ValidationError("Add a trusted contact first")
    return [
        Recipient(id=str(d["_id"]), name=d["name"], phone_number=d["phone_number"])
        for d in docs
    ]
