"""
Query models - Read-only projections of engine state.

These pydantic models are what the query surface hands out and what the
CLI prints as JSON. They hold no behaviour; the engine fills them from
its own computations on each read.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from roundbid.core.auction.claims import ClaimStatus, ClaimTicket
from roundbid.core.auction.models import AuctionStatus


def claim_banner_visible(completed_at: Optional[float], now: float, visibility: float) -> bool:
    """Whether the winners banner is shown. Presentation only."""
    if completed_at is None:
        return False
    return completed_at <= now < completed_at + visibility


class AuctionStatusView(BaseModel):
    auction_id: str
    code: str
    name: str
    status: AuctionStatus
    current_round: Optional[int] = None
    seconds_remaining: Optional[float] = None
    start_time: float
    completed_at: Optional[float] = None
    prize_value: int
    entry_fee: int
    participants: int = Field(0, ge=0, description="Participants with entry paid")
    cancelled_by: Optional[str] = None
    clock_stale: bool = Field(False, description="Degraded mode: time source unreachable")
    banner_visible: bool = False


class LeaderboardEntryView(BaseModel):
    rank: int = Field(..., ge=1)
    participant_id: str
    amount: int
    submitted_at: float
    qualified: bool


class RankClaimView(BaseModel):
    rank: int = Field(..., ge=1)
    participant_id: str
    amount: int
    status: ClaimStatus
    scheduled_start: float = Field(..., description="Earliest start if every higher rank runs its full window")
    window_start: Optional[float] = None
    deadline: Optional[float] = None
    ended_at: Optional[float] = None


class ClaimStatusView(BaseModel):
    """
    Claim lifecycle of a completed auction.

    `deadline` is the current holder's; it is None once the ticket is
    CLAIMED or EXPIRED (prize unclaimed). WAITING ranks have no
    `window_start` yet, only their `scheduled_start`.
    """
    auction_id: str
    status: ClaimStatus
    current_rank: Optional[int] = None
    deadline: Optional[float] = None
    claimed_by: Optional[str] = None
    prize_unclaimed: bool = False
    clock_stale: bool = Field(False, description="Degraded mode: time source unreachable")
    ranks: List[RankClaimView] = Field(default_factory=list)

    @classmethod
    def from_ticket(cls, ticket: ClaimTicket, clock_stale: bool = False) -> "ClaimStatusView":
        return cls(
            auction_id=ticket.auction_id,
            status=ticket.status,
            current_rank=ticket.current_rank,
            deadline=ticket.deadline,
            claimed_by=ticket.claimed_by,
            prize_unclaimed=ticket.prize_unclaimed,
            clock_stale=clock_stale,
            ranks=[
                RankClaimView(
                    rank=rc.rank,
                    participant_id=rc.participant_id,
                    amount=rc.amount,
                    status=rc.status,
                    scheduled_start=rc.scheduled_start,
                    window_start=rc.window_start,
                    deadline=rc.deadline,
                    ended_at=rc.ended_at,
                )
                for rc in ticket.ranks
            ],
        )
