"""
Rejection taxonomy and engine exceptions.

Validation failures (bids, entries, claims, cancellations) are returned as
typed result objects carrying a RejectReason. Exceptions are reserved for
lookups and misuse of the engine API.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional


class RejectReason(IntEnum):
    """Why a mutating request was refused."""
    NO_ENTRY = 1                    # Entry fee not paid
    WRONG_ROUND = 2                 # Round is not the open round
    DUPLICATE_BID = 3               # Already bid in this round
    BID_NOT_PROGRESSIVE = 4         # Not above previous round's bid
    CANCELLATION_WINDOW_CLOSED = 5
    CLAIM_WINDOW_EXPIRED = 6
    ALREADY_RESOLVED = 7            # Claim ticket already terminal
    AUCTION_CANCELLED = 8
    ENTRY_WINDOW_CLOSED = 9
    ALREADY_ENTERED = 10
    NOT_CURRENT_HOLDER = 11         # Claimant does not hold claim rights
    INVALID_INPUT = 12


@dataclass(frozen=True)
class _Result:
    accepted: bool
    reason: Optional[RejectReason] = None
    message: str = ""

    def __bool__(self) -> bool:
        return self.accepted


@dataclass(frozen=True)
class BidResult(_Result):
    """Outcome of a bid submission."""
    bid: Optional[object] = None


@dataclass(frozen=True)
class EntryResult(_Result):
    """Outcome of an entry request or entry payment confirmation."""
    payment_ref: Optional[str] = None


@dataclass(frozen=True)
class ClaimResult(_Result):
    """Outcome of a claim request, payment confirmation or forfeit."""
    rank: Optional[int] = None
    payment_ref: Optional[str] = None


@dataclass(frozen=True)
class CancellationResult(_Result):
    """Outcome of an admin cancellation."""
    refunded: int = 0


def rejected(result_cls, reason: RejectReason, message: str = "", **extra):
    """Build a rejected result of the given type."""
    return result_cls(accepted=False, reason=reason, message=message or reason.name, **extra)


# =============================================================================
# Exceptions
# =============================================================================


class EngineError(Exception):
    """Base exception for all engine errors."""


class AuctionNotFound(EngineError):
    """Raised when an auction id is unknown."""


class DuplicateAuction(EngineError):
    """Raised when creating an auction whose id already exists."""


class AuctionNotCompleted(EngineError):
    """Raised when winners or claims are requested before completion."""


class TimeSourceError(EngineError):
    """Raised when the trusted time source cannot be reached."""


class StorageError(EngineError):
    """Raised when persisted state is inconsistent."""
