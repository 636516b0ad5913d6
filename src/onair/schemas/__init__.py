"""Pydantic schemas for the OnAir API."""

from .rating import RatingCreate, RatingResponse, RatingSubmitted

__all__ = ["RatingCreate", "RatingResponse", "RatingSubmitted"]
