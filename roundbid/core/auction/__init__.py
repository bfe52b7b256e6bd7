"""
Auction Module.

This module provides the timed auction lifecycle:
- Round timeline and qualification
- Bid ledger
- Winner resolution
- Claim escalation
- Admin cancellation
"""

from roundbid.core.auction.models import (
    Auction,
    AuctionStatus,
    Participant,
    Bid,
    WinnerEntry,
    format_auction_code,
    ROUND_LENGTH,
    TOTAL_ROUNDS,
)

from roundbid.core.auction.rounds import (
    RoundEngine,
    QualificationTracker,
)

from roundbid.core.auction.ledger import BidLedger
from roundbid.core.auction.resolver import WinnerResolver

from roundbid.core.auction.claims import (
    ClaimEscalator,
    ClaimEvent,
    ClaimEventKind,
    ClaimStatus,
    ClaimTicket,
    RankClaim,
    DEFAULT_CLAIM_WINDOW,
)

from roundbid.core.auction.cancellation import CancellationGuard

__all__ = [
    # Models
    "Auction",
    "AuctionStatus",
    "Participant",
    "Bid",
    "WinnerEntry",
    "format_auction_code",
    "ROUND_LENGTH",
    "TOTAL_ROUNDS",
    # Rounds
    "RoundEngine",
    "QualificationTracker",
    # Ledger & Resolution
    "BidLedger",
    "WinnerResolver",
    # Claims
    "ClaimEscalator",
    "ClaimEvent",
    "ClaimEventKind",
    "ClaimStatus",
    "ClaimTicket",
    "RankClaim",
    "DEFAULT_CLAIM_WINDOW",
    # Cancellation
    "CancellationGuard",
]
