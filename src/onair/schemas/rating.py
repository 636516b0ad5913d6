"""Rating-related Pydantic schemas."""

from typing import Literal

from pydantic import BaseModel, Field, StrictInt, field_validator


class RatingCreate(BaseModel):
    """Schema for submitting a song rating."""

    song_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    # Strict so JSON booleans and floats are not coerced into a vote.
    rating: StrictInt = Field(..., description="1 for thumbs up, -1 for thumbs down")

    @field_validator("rating")
    @classmethod
    def _unit_rating(cls, value: int) -> int:
        if value not in (1, -1):
            raise ValueError("Rating must be 1 (thumbs up) or -1 (thumbs down)")
        return value


class RatingResponse(BaseModel):
    """Aggregate ratings for a song plus the caller's own rating."""

    song_id: str
    thumbs_up: int
    thumbs_down: int
    user_rating: Literal[-1, 1] | None = None


class RatingSubmitted(RatingResponse):
    message: str = "Rating submitted"
