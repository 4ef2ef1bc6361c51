"""
places.py — Safe places and community helpfulness feedback.

Routes:
  GET    /api/v1/places                        — browse (guests welcome)
  GET    /api/v1/places/nearby                 — police + hospitals from OpenStreetMap (20/minute)
  POST   /api/v1/places                        — add a personal or public place
  DELETE /api/v1/places/{id}                   — remove your own place (soft delete)
  POST   /api/v1/places/{id}/report            — flag a place as wrong / unsafe
  POST   /api/v1/places/{id}/feedback          — helpful? + tags (30/minute)
  GET    /api/v1/places/{id}/feedback/me       — your own feedback for a place

Visibility: system places (police / hospital / shelter) and public places
are shown to everyone; personal places only to their owner.

Feedback is one record per (place, user). Every write re-reads the full
feedback set for the place and recomputes its PlaceScore from scratch
(services/helpfulness.py), then stores it on the place document.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pymongo.errors import PyMongoError

from safehaven.core.database import get_db, require_db
from safehaven.core.errors import PersistenceError
from safehaven.core.rate_limit import limiter
from safehaven.models.place import (
    Coordinates,
    FeedbackOut,
    FeedbackRecord,
    FeedbackRequest,
    NearbyPlacesResponse,
    PlaceScore,
    PlacesResponse,
    SafePlaceCreate,
    SafePlaceOut,
)
from safehaven.routes.auth import CurrentUser, OptionalUser
from safehaven.services.geo import format_distance, sort_by_distance
from safehaven.services.geolocation import origin_or_fallback
from safehaven.services.helpfulness import compute_place_score
from safehaven.services.overpass_client import overpass_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/places", tags=["places"])

PLACES = "places"
FEEDBACK = "place_feedback"

_SYSTEM_CATEGORIES = {"police", "hospital", "shelter"}


# ── Helpers ───────────────────────────────────────────────────────────────────

@contextmanager
def _db_errors(action: str):
    """Re-raise driver failures inside the block as PersistenceError (503)."""
    try:
        yield
    except PyMongoError as exc:
        raise PersistenceError(f"Could not {action}: {exc}") from exc


def _doc_to_place_out(doc: dict, distance: Optional[float] = None) -> SafePlaceOut:
    return SafePlaceOut(
        id=str(doc["_id"]),
        name=doc["name"],
        category=doc["category"],
        address=doc.get("address", ""),
        coordinates=doc.get("coordinates"),
        phone=doc.get("phone"),
        description=doc.get("description"),
        is_verified=doc.get("is_verified", False),
        added_by=doc.get("added_by", "user"),
        owner_id=doc.get("owner_id"),
        report_count=doc.get("report_count", 0),
        score=PlaceScore(**(doc.get("score") or {})),
        distance_meters=distance,
        distance=format_distance(distance) if distance is not None else None,
        created_at=doc.get("created_at"),
    )


def _visible_to(doc: dict, user_id: Optional[str]) -> bool:
    if doc.get("category") == "personal":
        return user_id is not None and doc.get("owner_id") == user_id
    return True


def _coords_of(doc: dict) -> Optional[tuple[float, float]]:
    coords = doc.get("coordinates")
    if not coords:
        return None
    return coords["lat"], coords["lng"]


def _parse_oid(place_id: str) -> ObjectId:
    try:
        return ObjectId(place_id)
    except InvalidId:
        raise HTTPException(status_code=404, detail="Place not found")


async def _get_visible_place(db, place_id: str, user_id: Optional[str]) -> dict:
    oid = _parse_oid(place_id)
    with _db_errors("load place"):
        doc = await db[PLACES].find_one({"_id": oid, "is_active": True})
    if not doc or not _visible_to(doc, user_id):
        raise HTTPException(status_code=404, detail="Place not found")
    return doc


async def recompute_place_score(db, place_id: str, now: Optional[datetime] = None) -> PlaceScore:
    """
    Rebuild the place's score from every feedback record and store it.

    Always recomputed from scratch, so a score left stale by a failed run
    is corrected by the next successful one.
    """
    with _db_errors("update the place score"):
        records = [
            FeedbackRecord(**{k: v for k, v in doc.items() if k != "_id"})
            async for doc in db[FEEDBACK].find({"place_id": place_id})
        ]
        score = compute_place_score(records, now)
        await db[PLACES].update_one(
            {"_id": ObjectId(place_id)},
            {"$set": {"score": score.model_dump()}},
        )
    return score


# ── Browse ────────────────────────────────────────────────────────────────────

@router.get("", response_model=PlacesResponse)
async def list_places(
    current_user: OptionalUser,
    lat: Optional[float] = Query(default=None, ge=-90, le=90),
    lng: Optional[float] = Query(default=None, ge=-180, le=180),
    radius_km: float = Query(default=10.0, gt=0, le=100),
    location_error: Optional[str] = Query(default=None, pattern="^(permission_denied|unavailable|timeout)$"),
    db=Depends(get_db),
):
    """
    System, public and (for signed-in users) personal places.

    With an origin, places come back nearest-first within radius_km;
    places without coordinates are listed last. When the device reported
    a location failure, the configured fallback origin is used and the
    failure is echoed back so the client can explain it.
    """
    db = require_db(db)
    user_id = current_user.id if current_user else None
    origin, error = origin_or_fallback(lat, lng, location_error)

    with _db_errors("load places"):
        docs = [d async for d in db[PLACES].find({"is_active": True}) if _visible_to(d, user_id)]

    if origin is None:
        places = [_doc_to_place_out(d) for d in docs]
    else:
        ranked = sort_by_distance(docs, origin, _coords_of, max_meters=radius_km * 1000)
        places = [_doc_to_place_out(d, dist) for d, dist in ranked]

    return PlacesResponse(
        places=places,
        origin=Coordinates(lat=origin[0], lng=origin[1]) if origin else None,
        location_error=error.message if error else None,
        location_error_kind=error.kind.value if error else None,
    )


@router.get("/nearby", response_model=NearbyPlacesResponse)
@limiter.limit("20/minute")
async def nearby_emergency_services(
    request: Request,
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius_km: float = Query(default=3.0, gt=0, le=25),
):
    """Police stations and hospitals around a point, nearest first."""
    police = await overpass_client.police_stations(lat, lng, radius_km)
    hospitals = await overpass_client.hospitals(lat, lng, radius_km)
    return NearbyPlacesResponse(police=police, hospitals=hospitals)


# ── User places ───────────────────────────────────────────────────────────────

@router.post("", response_model=SafePlaceOut, status_code=status.HTTP_201_CREATED)
async def add_place(payload: SafePlaceCreate, current_user: CurrentUser, db=Depends(get_db)):
    db = require_db(db)
    doc = {
        **payload.model_dump(),
        "is_verified": False,
        "added_by": "user",
        "owner_id": current_user.id,
        "is_active": True,
        "report_count": 0,
        "score": PlaceScore().model_dump(),
        "created_at": datetime.now(tz=timezone.utc),
    }
    with _db_errors("save place"):
        result = await db[PLACES].insert_one(doc)
    doc["_id"] = result.inserted_id
    logger.info("Place %s (%s) added by %s", result.inserted_id, payload.category, current_user.id)
    return _doc_to_place_out(doc)


@router.delete("/{place_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_place(place_id: str, current_user: CurrentUser, db=Depends(get_db)):
    db = require_db(db)
    doc = await _get_visible_place(db, place_id, current_user.id)
    if doc.get("category") in _SYSTEM_CATEGORIES or doc.get("owner_id") != current_user.id:
        raise HTTPException(status_code=403, detail="You can only remove places you added")

    with _db_errors("remove place"):
        await db[PLACES].update_one({"_id": doc["_id"]}, {"$set": {"is_active": False}})
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{place_id}/report", response_model=SafePlaceOut)
async def report_place(place_id: str, current_user: CurrentUser, db=Depends(get_db)):
    db = require_db(db)
    doc = await _get_visible_place(db, place_id, current_user.id)
    with _db_errors("report place"):
        await db[PLACES].update_one({"_id": doc["_id"]}, {"$inc": {"report_count": 1}})
    logger.info("Place %s reported by %s", place_id, current_user.id)
    return _doc_to_place_out({**doc, "report_count": doc.get("report_count", 0) + 1})


# ── Helpfulness feedback ──────────────────────────────────────────────────────

@router.post("/{place_id}/feedback", response_model=PlaceScore)
@limiter.limit("30/minute")
async def submit_feedback(
    request: Request,
    place_id: str,
    payload: FeedbackRequest,
    current_user: CurrentUser,
    db=Depends(get_db),
):
    """
    Create or overwrite the caller's feedback for a place and return the
    place's recomputed score.
    """
    db = require_db(db)
    await _get_visible_place(db, place_id, current_user.id)

    now = datetime.now(tz=timezone.utc)
    with _db_errors("save feedback"):
        await db[FEEDBACK].update_one(
            {"place_id": place_id, "user_id": current_user.id},
            {
                "$set": {"is_helpful": payload.is_helpful, "tags": payload.tags, "updated_at": now},
                "$setOnInsert": {"submitted_at": now},
            },
            upsert=True,
        )
    score = await recompute_place_score(db, place_id, now)
    logger.info(
        "Feedback on %s by %s → score %d (%d records)",
        place_id, current_user.id, score.unified_score, score.total_feedback,
    )
    return score


@router.get("/{place_id}/feedback/me", response_model=Optional[FeedbackOut])
async def my_feedback(place_id: str, current_user: CurrentUser, db=Depends(get_db)):
    db = require_db(db)
    with _db_errors("load feedback"):
        doc = await db[FEEDBACK].find_one({"place_id": place_id, "user_id": current_user.id})
    if not doc:
        return None
    return FeedbackOut(
        place_id=doc["place_id"],
        is_helpful=doc["is_helpful"],
        tags=doc.get("tags", []),
        submitted_at=doc["submitted_at"],
        updated_at=doc["updated_at"],
    )
