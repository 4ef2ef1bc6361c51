"""
place.py — Safe place, helpfulness feedback and score schemas.

Place categories:
  police / hospital / shelter — system places (seeded, verified)
  public                      — user-contributed, visible to everyone
  personal                    — user-contributed, visible only to the owner

A place's PlaceScore is derived data: it is recomputed from every
place_feedback record for the place whenever one is written, and stored
on the place document under "score".
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

PlaceCategory = Literal["police", "hospital", "shelter", "personal", "public"]
ConfidenceLevel = Literal["low", "medium", "high"]

MAX_TAGS_PER_FEEDBACK = 3


class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


# ── Helpfulness ───────────────────────────────────────────────────────────────

class PlaceScore(BaseModel):
    """Community trust signal for one place."""
    helpful_count: int = 0
    not_helpful_count: int = 0
    total_feedback: int = 0
    unified_score: int = Field(default=0, ge=0, le=100)
    confidence_level: ConfidenceLevel = "low"
    top_tags: list[str] = Field(default_factory=list)
    recent_feedback_count: int = 0


def _clean_tags(tags: list[str]) -> list[str]:
    # A record's tags are a set: trim, drop blanks and repeats, keep order.
    seen: list[str] = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


class FeedbackRecord(BaseModel):
    """One user's opinion of one place. Unique per (place_id, user_id)."""
    place_id: str
    user_id: str
    is_helpful: bool
    tags: list[str] = Field(default_factory=list, max_length=MAX_TAGS_PER_FEEDBACK)
    submitted_at: datetime
    updated_at: datetime

    @field_validator("tags", mode="before")
    @classmethod
    def dedupe_tags(cls, value):
        return _clean_tags(value or [])


class FeedbackRequest(BaseModel):
    """Payload for POST /api/v1/places/{id}/feedback."""
    is_helpful: bool
    tags: list[str] = Field(default_factory=list, max_length=MAX_TAGS_PER_FEEDBACK)

    @field_validator("tags", mode="before")
    @classmethod
    def dedupe_tags(cls, value):
        tags = _clean_tags(value or [])
        if any(len(t) > 40 for t in tags):
            raise ValueError("Tags must be 40 characters or fewer")
        return tags


# ── Places ────────────────────────────────────────────────────────────────────

class SafePlaceCreate(BaseModel):
    """Payload for POST /api/v1/places."""
    name: str = Field(..., min_length=1, max_length=120)
    category: Literal["personal", "public"]
    address: str = Field(..., min_length=1, max_length=300)
    coordinates: Optional[Coordinates] = None
    phone: Optional[str] = Field(default=None, max_length=30)
    description: Optional[str] = Field(default=None, max_length=500)


class SafePlaceOut(BaseModel):
    id: str
    name: str
    category: PlaceCategory
    address: str
    coordinates: Optional[Coordinates] = None
    phone: Optional[str] = None
    description: Optional[str] = None
    is_verified: bool = False
    added_by: Literal["system", "user"] = "user"
    owner_id: Optional[str] = None
    report_count: int = 0
    score: PlaceScore = Field(default_factory=PlaceScore)
    distance_meters: Optional[float] = None
    distance: Optional[str] = None  # "350m" / "1.2km"
    created_at: Optional[datetime] = None


class PlacesResponse(BaseModel):
    places: list[SafePlaceOut]
    origin: Optional[Coordinates] = None
    # Set when the client could not get a fix and the fallback origin was used
    location_error: Optional[str] = None
    location_error_kind: Optional[str] = None


class NearbyPlace(BaseModel):
    """An amenity returned by the public geodata service."""
    id: str                        # "osm-police-123456"
    name: str
    category: Literal["police", "hospital"]
    address: str
    coordinates: Coordinates
    phone: Optional[str] = None
    distance_meters: Optional[float] = None
    distance: Optional[str] = None


class NearbyPlacesResponse(BaseModel):
    police: list[NearbyPlace]
    hospitals: list[NearbyPlace]


class FeedbackOut(BaseModel):
    place_id: str
    is_helpful: bool
    tags: list[str]
    submitted_at: datetime
    updated_at: datetime
