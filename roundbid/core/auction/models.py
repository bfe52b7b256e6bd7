"""
Auction data model.

Auction, Participant, Bid and WinnerEntry records shared by the round,
ledger, resolver and claim components. Status is never stored on the
auction: it is derived from the schedule, the clock and the cancellation
fact by the RoundEngine.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

# Default schedule (seconds)
ROUND_LENGTH = 15 * 60
TOTAL_ROUNDS = 4

CODE_PREFIX = "HA"


class AuctionStatus(str, Enum):
    """Lifecycle position of an auction."""
    ENTRY = "ENTRY"
    ROUND_1 = "ROUND_1"
    ROUND_2 = "ROUND_2"
    ROUND_3 = "ROUND_3"
    ROUND_4 = "ROUND_4"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @classmethod
    def for_round(cls, round_number: int) -> "AuctionStatus":
        return cls(f"ROUND_{round_number}")

    @property
    def round_number(self) -> Optional[int]:
        """Open round for ROUND_k statuses, else None."""
        if self.value.startswith("ROUND_"):
            return int(self.value.split("_")[1])
        return None

    @property
    def is_live(self) -> bool:
        return self.round_number is not None

    @property
    def is_terminal(self) -> bool:
        return self in (AuctionStatus.COMPLETED, AuctionStatus.CANCELLED)


@dataclass
class Auction:
    """
    A single timed auction.

    Attributes:
        auction_id: Unique identifier
        code: Human-friendly code (e.g. HA000001)
        name: Display name
        start_time: Epoch seconds at which round 1 opens
        prize_value: Monetary value of the prize
        entry_fee: Fee gating participation
        round_length: Seconds per round
        total_rounds: Number of bidding rounds
        cancelled_at: When an admin cancelled the auction, if ever
        cancelled_by: Admin who cancelled
    """
    auction_id: str
    code: str
    name: str
    start_time: float
    prize_value: int
    entry_fee: int
    round_length: int = ROUND_LENGTH
    total_rounds: int = TOTAL_ROUNDS
    cancelled_at: Optional[float] = None
    cancelled_by: Optional[str] = None

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None

    @property
    def end_time(self) -> float:
        """Scheduled close of the last round."""
        return self.start_time + self.round_length * self.total_rounds

    def round_opens_at(self, round_number: int) -> float:
        return self.start_time + (round_number - 1) * self.round_length

    def round_closes_at(self, round_number: int) -> float:
        return self.start_time + round_number * self.round_length


@dataclass
class Participant:
    """A user who has joined (or is joining) an auction."""
    auction_id: str
    participant_id: str
    display_name: str
    paid_at: Optional[float] = None
    payment_ref: Optional[str] = None

    @property
    def has_paid_entry(self) -> bool:
        return self.paid_at is not None


@dataclass(frozen=True)
class Bid:
    """
    An accepted bid. Immutable once recorded.

    `seq` is the ledger's ingestion order and breaks ties between bids
    with identical amounts and timestamps.
    """
    auction_id: str
    participant_id: str
    round_number: int
    amount: int
    submitted_at: float
    seq: int = 0

    def sort_key(self):
        """Ranking order: highest amount, then earliest submission."""
        return (-self.amount, self.submitted_at, self.seq)


@dataclass(frozen=True)
class WinnerEntry:
    """A ranked winner (rank 1-3) produced by the resolver."""
    rank: int
    participant_id: str
    amount: int
    submitted_at: float


def format_auction_code(seq: int) -> str:
    """Human-friendly code, e.g. 1 -> HA000001."""
    return f"{CODE_PREFIX}{seq:06d}"
