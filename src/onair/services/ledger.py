"""Song vote ledger: one active vote per voter per song."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from onair.db.backends import Row, StorageBackend
from onair.db.errors import ConstraintViolation
from onair.db.schema import VOTE_TABLE

logger = logging.getLogger(__name__)

VALID_POLARITIES = (1, -1)


class VoteValidationError(ValueError):
    """Raised when a vote is rejected before touching storage."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class VoterContext:
    """Auxiliary voter metadata kept for audit and display only."""

    session_id: str | None = None
    network_address: str | None = None


@dataclass(frozen=True)
class VoteTally:
    upvotes: int
    downvotes: int
    my_vote: int | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"upvotes": self.upvotes, "downvotes": self.downvotes, "my_vote": self.my_vote}


class VoteLedger:
    """Record song votes and report aggregate counts.

    Submitting is lookup-then-insert without a surrounding transaction. The
    unique ``(song_id, voter_fingerprint)`` index settles concurrent first
    votes from one voter: the losing insert is re-read and applied as an
    update or a no-op.
    """

    def __init__(self, backend: StorageBackend) -> None:
        self.backend = backend

    async def submit_vote(
        self,
        song_id: str,
        voter_fingerprint: str,
        polarity: int,
        voter: VoterContext | None = None,
    ) -> VoteTally:
        """Insert, change or keep the caller's vote and return fresh counts.

        Raises:
            VoteValidationError: For a polarity other than 1 or -1, or an
                empty song id or fingerprint.
            TransientStorageError: If the backend is saturated or unreachable.
        """
        self._validate(song_id, voter_fingerprint, polarity)
        voter = voter or VoterContext()

        existing = await self._find_vote(song_id, voter_fingerprint)
        if existing is None:
            try:
                await self._insert_vote(song_id, voter_fingerprint, polarity, voter)
            except ConstraintViolation:
                # A concurrent request from the same voter inserted first.
                existing = await self._find_vote(song_id, voter_fingerprint)
                if existing is None:
                    raise
                logger.info("Concurrent vote on song %s resolved against existing row", song_id)
            else:
                logger.info("New vote on song %s: %+d", song_id, polarity)

        if existing is not None:
            await self._apply_to_existing(existing, song_id, voter_fingerprint, polarity, voter)

        return await self.get_votes(song_id, voter_fingerprint)

    async def get_votes(self, song_id: str, voter_fingerprint: str | None = None) -> VoteTally:
        """Aggregate counts for ``song_id`` plus the caller's own polarity, if any."""
        row = await self.backend.query_one(
            "SELECT "
            "COALESCE(SUM(CASE WHEN polarity = 1 THEN 1 ELSE 0 END), 0) AS upvotes, "
            "COALESCE(SUM(CASE WHEN polarity = -1 THEN 1 ELSE 0 END), 0) AS downvotes "
            f"FROM {VOTE_TABLE} WHERE song_id = ?",
            (song_id,),
        )
        my_vote: int | None = None
        if voter_fingerprint:
            mine = await self._find_vote(song_id, voter_fingerprint)
            if mine is not None:
                my_vote = int(mine["polarity"])
        return VoteTally(
            upvotes=int(row["upvotes"]) if row else 0,
            downvotes=int(row["downvotes"]) if row else 0,
            my_vote=my_vote,
        )

    @staticmethod
    def _validate(song_id: str, voter_fingerprint: str, polarity: int) -> None:
        if isinstance(polarity, bool) or polarity not in VALID_POLARITIES:
            raise VoteValidationError("Rating must be 1 (thumbs up) or -1 (thumbs down)")
        if not song_id:
            raise VoteValidationError("song_id is required")
        if not voter_fingerprint:
            raise VoteValidationError("voter fingerprint is required")

    async def _find_vote(self, song_id: str, voter_fingerprint: str) -> Row | None:
        return await self.backend.query_one(
            f"SELECT id, polarity FROM {VOTE_TABLE} WHERE song_id = ? AND voter_fingerprint = ?",
            (song_id, voter_fingerprint),
        )

    async def _insert_vote(
        self,
        song_id: str,
        voter_fingerprint: str,
        polarity: int,
        voter: VoterContext,
    ) -> None:
        await self.backend.execute(
            f"INSERT INTO {VOTE_TABLE} "
            "(song_id, session_id, network_address, voter_fingerprint, polarity, recorded_at) "
            "VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)",
            (song_id, voter.session_id, voter.network_address, voter_fingerprint, polarity),
        )

    async def _apply_to_existing(
        self,
        existing: Row,
        song_id: str,
        voter_fingerprint: str,
        polarity: int,
        voter: VoterContext,
    ) -> None:
        if int(existing["polarity"]) == polarity:
            logger.debug("Vote on song %s unchanged", song_id)
            return
        await self.backend.execute(
            f"UPDATE {VOTE_TABLE} SET polarity = ?, session_id = ?, network_address = ? "
            "WHERE song_id = ? AND voter_fingerprint = ?",
            (polarity, voter.session_id, voter.network_address, song_id, voter_fingerprint),
        )
        logger.info("Vote on song %s changed to %+d", song_id, polarity)
