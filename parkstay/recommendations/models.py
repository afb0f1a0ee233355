from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

STATE_PATTERN = r"^[A-Z]{2}$"


class _StateCode(BaseModel):
    """Mixin normalising ``state`` to an upper-case code before validation."""

    @field_validator("state", mode="before", check_fields=False)
    @classmethod
    def normalize_state(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value


# ── Requests ─────────────────────────────────────────────────────────────


class SpeciesListingsRequest(BaseModel):
    species: str = Field(..., min_length=1, description="Substring of a species common name")
    num: int = Field(..., ge=1, description="Listings to return per park")


class SpeciesStateListingsRequest(SpeciesListingsRequest, _StateCode):
    state: str = Field(..., pattern=STATE_PATTERN, description="2-letter state code")


class BiodiverseListingsRequest(_StateCode):
    state: str = Field(..., pattern=STATE_PATTERN)
    neighbourhood: str = Field(..., min_length=1)
    radius_miles: float = Field(..., gt=0)
    num: int = Field(..., ge=1)


class PopularSpeciesRequest(BaseModel):
    num: int = Field(..., ge=1, description="Species to return per park")
    min_trail_popularity: float | None = Field(
        default=None, description="Trail popularity a park needs; engine default when omitted"
    )


class PhotoSpeciesRequest(BaseModel):
    num: int = Field(..., ge=1)


class NearParkListingsRequest(BaseModel):
    park_code: str = Field(..., min_length=1)
    num: int = Field(default=50, ge=1)


# ── Entities ─────────────────────────────────────────────────────────────


class ParkOut(BaseModel):
    park_code: str
    park_name: str
    state: str | None = None
    acres: float | None = None
    latitude: float | None = None
    longitude: float | None = None
    species_count: int | None = None


class SpeciesOut(BaseModel):
    species_id: int | str
    scientific_name: str | None = None
    common_names: str | None = None
    category: str | None = None
    park_name: str | None = None


class TrailOut(BaseModel):
    park_code: str
    park_name: str | None = None
    name: str | None = None
    length: float | None = None
    avg_rating: float | None = None
    popularity: float | None = None


class ListingOut(BaseModel):
    id: int | str
    name: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    price: float | None = None
    number_of_reviews: int | None = None
    city: str | None = None
    state: str | None = None
    neighbourhood: str | None = None
    host_name: str | None = None
    room_type: str | None = None
    minimum_nights: int | None = None
    availability_365: int | None = None


# ── Ranked results ───────────────────────────────────────────────────────


class ListingRecommendation(ListingOut):
    park_name: str
    distance: float | None = None
    rank: int


class NearbyListing(ListingOut):
    park_code: str
    distance: float | None = None
    rank: int


class BiodiverseListing(ListingOut):
    count: int
    rank: int


class PopularSpecies(BaseModel):
    park_name: str
    scientific_name: str
    common_names: str | None = None
    species_count: int
    rank: int


class PhotoSpecies(BaseModel):
    species_id: int | str
    scientific_name: str | None = None
    common_names: str | None = None
    occurrence_count: int
    rank: int
