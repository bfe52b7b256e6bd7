"""
Cancellation Guard - Admin cancellation of an auction.

Cancellation is allowed while the auction is in ENTRY, and during live
rounds only while no more than the cancel window (12 minutes) has elapsed
since start. Accepted cancellations stamp the auction as CANCELLED and
hand every paid participant to the refund collaborator.
"""

from typing import Optional

from roundbid.core.auction.ledger import BidLedger
from roundbid.core.auction.models import Auction
from roundbid.core.auction.rounds import RoundEngine
from roundbid.core.clock import Clock
from roundbid.core.collaborators import RefundCollaborator
from roundbid.core.errors import CancellationResult, RejectReason, rejected
from roundbid.core.locks import KeyedLocks
from roundbid.utils.logger import get_logger
from roundbid.utils.validation import validate_identifier

logger = get_logger("cancellation")


class CancellationGuard:
    """Decides and applies admin cancellations."""

    def __init__(
        self,
        ledger: BidLedger,
        rounds: RoundEngine,
        clock: Clock,
        refunds: Optional[RefundCollaborator] = None,
        locks: Optional[KeyedLocks] = None,
    ):
        self.ledger = ledger
        self.rounds = rounds
        self.clock = clock
        self.refunds = refunds
        self.locks = locks if locks is not None else KeyedLocks()

    def can_cancel(self, auction: Auction, now: float) -> bool:
        """Pure check of the cancellation window at `now`."""
        return self.rounds.cancellation_permitted(
            auction,
            now,
            self.ledger.bidder_count(auction.auction_id, 1),
            clock_stale=self.clock.stale,
        )

    def cancel(self, auction_id: str, admin_id: str) -> CancellationResult:
        """
        Cancel an auction on behalf of an admin.

        Args:
            auction_id: Auction to cancel
            admin_id: Requesting admin

        Returns:
            CancellationResult with the number of refunds requested
        """
        valid, err = validate_identifier(admin_id, "admin_id")
        if not valid:
            return rejected(CancellationResult, RejectReason.INVALID_INPUT, err)

        with self.locks.hold(auction_id):
            auction = self.ledger.get_auction(auction_id)
            now = self.clock.now()

            if not self.can_cancel(auction, now):
                elapsed_min = (now - auction.start_time) / 60
                logger.warning(f"Cancellation of {auction_id} by {admin_id} refused "
                               f"({elapsed_min:.1f} min since start)")
                return rejected(
                    CancellationResult,
                    RejectReason.CANCELLATION_WINDOW_CLOSED,
                    f"Cancellation window closed ({elapsed_min:.1f} min since start)",
                )

            auction.cancelled_at = now
            auction.cancelled_by = admin_id
            if self.ledger.storage_manager:
                self.ledger.storage_manager.save_cancellation(auction_id, now, admin_id)

            paid = self.ledger.paid_participants(auction_id)

        if self.refunds is not None:
            self.refunds.issue_refunds(auction_id, paid)

        logger.info(f"Auction {auction_id} cancelled by {admin_id}; {len(paid)} refunds requested")
        return CancellationResult(accepted=True, refunded=len(paid))
