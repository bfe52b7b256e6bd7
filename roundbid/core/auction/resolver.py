"""
Winner Resolver - Ranked winners of a completed auction.

The deciding round is round 4, or round 1 when the auction finished early.
Candidates are the deciding round's bids from participants qualified for
that round, ordered by amount (desc), submission time (asc) and ledger
sequence (asc). The first three become ranks 1-3.

Resolution happens once per auction. Repeat calls return the cached list,
so retries after a network failure are harmless.
"""

import threading
from typing import Dict, List, Optional

from roundbid.core.auction.ledger import BidLedger
from roundbid.core.auction.models import AuctionStatus, Bid, WinnerEntry
from roundbid.core.auction.rounds import QualificationTracker, RoundEngine
from roundbid.core.errors import AuctionNotCompleted
from roundbid.utils.logger import get_logger

logger = get_logger("resolver")

DEFAULT_WINNER_RANKS = 3


class WinnerResolver:
    """Computes and caches the top-ranked winners per auction."""

    def __init__(
        self,
        ledger: BidLedger,
        rounds: RoundEngine,
        qualification: QualificationTracker,
        winner_ranks: int = DEFAULT_WINNER_RANKS,
    ):
        self.ledger = ledger
        self.rounds = rounds
        self.qualification = qualification
        self.winner_ranks = winner_ranks
        self._resolved: Dict[str, List[WinnerEntry]] = {}
        self._lock = threading.Lock()

    def is_resolved(self, auction_id: str) -> bool:
        return auction_id in self._resolved

    def cached(self, auction_id: str) -> Optional[List[WinnerEntry]]:
        return self._resolved.get(auction_id)

    def resolve(self, auction_id: str, now: float) -> List[WinnerEntry]:
        """
        Ranked winners of a completed auction.

        Args:
            auction_id: Auction to resolve
            now: Clock time, used to confirm completion

        Returns:
            Up to `winner_ranks` WinnerEntry objects, rank 1 first

        Raises:
            AuctionNotCompleted: if the auction is not COMPLETED at `now`
        """
        cached = self._resolved.get(auction_id)
        if cached is not None:
            return cached

        with self._lock:
            cached = self._resolved.get(auction_id)
            if cached is not None:
                return cached

            auction = self.ledger.get_auction(auction_id)
            round_one_bidders = self.ledger.bidder_count(auction_id, 1)
            status = self.rounds.status(auction, now, round_one_bidders)
            if status != AuctionStatus.COMPLETED:
                raise AuctionNotCompleted(f"Auction {auction_id} is {status.value}, not COMPLETED")

            deciding = self.rounds.deciding_round(auction, round_one_bidders)
            candidates = [
                bid for bid in self.ledger.bids_for_round(auction_id, deciding)
                if self.qualification.is_qualified(auction_id, bid.participant_id, deciding, now)
            ]
            candidates.sort(key=Bid.sort_key)

            winners = [
                WinnerEntry(
                    rank=index + 1,
                    participant_id=bid.participant_id,
                    amount=bid.amount,
                    submitted_at=bid.submitted_at,
                )
                for index, bid in enumerate(candidates[: self.winner_ranks])
            ]
            self._resolved[auction_id] = winners

        if winners:
            summary = ", ".join(f"#{w.rank} {w.participant_id} ({w.amount})" for w in winners)
            logger.info(f"Auction {auction_id} resolved on round {deciding}: {summary}")
        else:
            logger.warning(f"Auction {auction_id} resolved with no qualified bids")
        return winners
