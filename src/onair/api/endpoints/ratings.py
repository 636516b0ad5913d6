"""Song rating endpoints."""

from fastapi import APIRouter

from onair.api.dependencies import FingerprintDep, LedgerDep, RequestMetadataDep
from onair.schemas.rating import RatingCreate, RatingResponse, RatingSubmitted
from onair.services.ledger import VoterContext

router = APIRouter(prefix="/ratings", tags=["ratings"])


@router.post("", response_model=RatingSubmitted)
async def submit_rating(
    rating_data: RatingCreate,
    ledger: LedgerDep,
    fingerprints: FingerprintDep,
    meta: RequestMetadataDep,
) -> RatingSubmitted:
    """Record the caller's thumbs up/down for a song.

    Repeating the same rating is a no-op; a different rating replaces the
    caller's previous one.
    """
    voter = VoterContext(
        session_id=rating_data.session_id,
        network_address=fingerprints.client_address(meta),
    )
    tally = await ledger.submit_vote(
        rating_data.song_id,
        fingerprints.fingerprint(meta),
        rating_data.rating,
        voter,
    )
    return RatingSubmitted(
        song_id=rating_data.song_id,
        thumbs_up=tally.upvotes,
        thumbs_down=tally.downvotes,
        user_rating=tally.my_vote,
    )


@router.get("/{song_id}", response_model=RatingResponse)
async def get_ratings(
    song_id: str,
    ledger: LedgerDep,
    fingerprints: FingerprintDep,
    meta: RequestMetadataDep,
) -> RatingResponse:
    """Return rating counts for a song and the caller's own rating."""
    tally = await ledger.get_votes(song_id, fingerprints.fingerprint(meta))
    return RatingResponse(
        song_id=song_id,
        thumbs_up=tally.upvotes,
        thumbs_down=tally.downvotes,
        user_rating=tally.my_vote,
    )
