"""
Round Engine - Time-driven round timeline of an auction.

The open round is never stored. It is recomputed on every read from

    elapsed = now - start_time
    round   = floor(elapsed / round_length) + 1

together with two immutable facts: whether an admin cancelled the auction
and how many participants bid in round 1 (fixed once round 1 closes).
Any reader with the same inputs computes the same answer.

Timeline:

    ENTRY --(start_time)--> ROUND_1 --> ROUND_2 --> ROUND_3 --> ROUND_4 --> COMPLETED
    ROUND_1 --(<= 3 round-1 bidders at round-1 close)--> COMPLETED
    ENTRY / ROUND_k --(admin cancel inside window)--> CANCELLED
"""

from typing import TYPE_CHECKING, Dict, Optional, Tuple

from roundbid.core.auction.models import Auction, AuctionStatus
from roundbid.utils.logger import get_logger

if TYPE_CHECKING:
    from roundbid.core.auction.ledger import BidLedger

logger = get_logger("rounds")

# Defaults (seconds)
DEFAULT_EARLY_FINISH_THRESHOLD = 3
DEFAULT_CANCEL_WINDOW = 12 * 60


class RoundEngine:
    """
    Pure computation of round state.

    Holds only configuration; every method is a function of its arguments.
    """

    def __init__(
        self,
        early_finish_threshold: int = DEFAULT_EARLY_FINISH_THRESHOLD,
        cancel_window: float = DEFAULT_CANCEL_WINDOW,
        stale_safety_margin: float = 0.0,
    ):
        self.early_finish_threshold = early_finish_threshold
        self.cancel_window = cancel_window
        self.stale_safety_margin = stale_safety_margin

    # =========================================================================
    # Status
    # =========================================================================

    def finished_early(self, auction: Auction, round_one_bidders: int) -> bool:
        """Whether the auction ends at round-1 close instead of round 4."""
        return auction.total_rounds > 1 and round_one_bidders <= self.early_finish_threshold

    def deciding_round(self, auction: Auction, round_one_bidders: int) -> int:
        """Round whose bids decide the winners."""
        if self.finished_early(auction, round_one_bidders):
            return 1
        return auction.total_rounds

    def completed_at(self, auction: Auction, round_one_bidders: int) -> float:
        """Moment the auction reaches COMPLETED."""
        return auction.round_closes_at(self.deciding_round(auction, round_one_bidders))

    def status(self, auction: Auction, now: float, round_one_bidders: int) -> AuctionStatus:
        """
        Current lifecycle status.

        Args:
            auction: The auction
            now: Clock time
            round_one_bidders: Participants with an accepted round-1 bid

        Returns:
            AuctionStatus at `now`
        """
        if auction.is_cancelled:
            return AuctionStatus.CANCELLED

        elapsed = now - auction.start_time
        if elapsed < 0:
            return AuctionStatus.ENTRY

        if now >= self.completed_at(auction, round_one_bidders):
            return AuctionStatus.COMPLETED

        index = int(elapsed // auction.round_length)
        return AuctionStatus.for_round(index + 1)

    def current_round(self, auction: Auction, now: float, round_one_bidders: int) -> Optional[int]:
        """Open round number, or None outside the bidding rounds."""
        return self.status(auction, now, round_one_bidders).round_number

    def round_window(self, auction: Auction, round_number: int) -> Tuple[float, float]:
        """(opens_at, closes_at) of a round."""
        return auction.round_opens_at(round_number), auction.round_closes_at(round_number)

    def seconds_remaining(self, auction: Auction, now: float, round_one_bidders: int) -> Optional[float]:
        """Seconds until the next scheduled transition, None once terminal."""
        status = self.status(auction, now, round_one_bidders)
        if status == AuctionStatus.ENTRY:
            return auction.start_time - now
        if status.is_live:
            return auction.round_closes_at(status.round_number) - now
        return None

    # =========================================================================
    # Windows
    # =========================================================================

    def entry_open(self, auction: Auction, now: float, round_one_bidders: int) -> bool:
        """Entry fees are accepted before start and while round 1 is open."""
        status = self.status(auction, now, round_one_bidders)
        return status in (AuctionStatus.ENTRY, AuctionStatus.ROUND_1)

    def cancellation_permitted(
        self,
        auction: Auction,
        now: float,
        round_one_bidders: int,
        clock_stale: bool = False,
    ) -> bool:
        """
        Whether an admin may cancel at `now`.

        ENTRY: always. Live rounds: only while elapsed <= cancel_window,
        shortened by the stale safety margin when the clock is stale.
        COMPLETED / CANCELLED: never.
        """
        status = self.status(auction, now, round_one_bidders)
        if status == AuctionStatus.ENTRY:
            return True
        if not status.is_live:
            return False

        window = self.cancel_window
        if clock_stale:
            window -= self.stale_safety_margin
        return now - auction.start_time <= window


class QualificationTracker:
    """
    Per-round qualification of participants.

    Qualified for round 1 iff the entry fee is paid; for round k > 1 iff
    also an accepted bid exists in every round 1..k-1. A miss in a round
    that has closed is permanent, so the first closed missed round is
    memoized per participant and never cleared.
    """

    def __init__(self, ledger: "BidLedger", rounds: RoundEngine):
        self.ledger = ledger
        self.rounds = rounds
        # (auction_id, participant_id) -> first round they are unqualified for
        self._disqualified_from: Dict[Tuple[str, str], int] = {}

    def disqualified_from(self, auction_id: str, participant_id: str) -> Optional[int]:
        """Memoized first unqualified round, if already known."""
        return self._disqualified_from.get((auction_id, participant_id))

    def is_qualified(
        self,
        auction_id: str,
        participant_id: str,
        round_number: int,
        now: Optional[float] = None,
    ) -> bool:
        """
        Whether a participant is qualified for a round.

        Args:
            auction_id: Auction
            participant_id: Participant
            round_number: Round being asked about (1-based)
            now: Clock time; used to decide which missed rounds are final.
                None treats every earlier round as closed.
        """
        key = (auction_id, participant_id)
        memo = self._disqualified_from.get(key)
        if memo is not None and round_number >= memo:
            return False

        participant = self.ledger.get_participant(auction_id, participant_id)
        if participant is None or not participant.has_paid_entry:
            return False

        for earlier in range(1, round_number):
            if self.ledger.bid_for(auction_id, participant_id, earlier) is not None:
                continue
            if self._round_closed(auction_id, earlier, now):
                self._disqualified_from[key] = earlier + 1
                logger.debug(f"Participant {participant_id} unqualified from round {earlier + 1} "
                             f"in auction {auction_id}")
            return False

        return True

    def _round_closed(self, auction_id: str, round_number: int, now: Optional[float]) -> bool:
        if now is None:
            return True
        auction = self.ledger.get_auction(auction_id)
        return now >= auction.round_closes_at(round_number)
