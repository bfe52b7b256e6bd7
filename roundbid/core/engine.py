"""
AuctionEngine - Coordinates the round, ledger, resolver and claim components.

This module ties together everything an auction needs after creation:
- Entry fee payment and the entry window
- Bid submission against the time-derived open round
- Winner resolution once the auction completes
- Rank-ordered claim escalation and forfeits
- Admin cancellation with refunds
- Read-only status, leaderboard and claim views

Every time-dependent decision reads the single Clock. Nothing is advanced
by timers; `sweep()` only re-reads claim tickets so that hand-off
notifications go out without waiting for a participant to ask.
"""

import itertools
from typing import Dict, List, Optional, Tuple

from roundbid.core.auction.cancellation import CancellationGuard
from roundbid.core.auction.claims import ClaimEscalator, ClaimStatus, ClaimTicket
from roundbid.core.auction.ledger import BidLedger
from roundbid.core.auction.models import (
    Auction,
    AuctionStatus,
    Participant,
    WinnerEntry,
    format_auction_code,
)
from roundbid.core.auction.resolver import WinnerResolver
from roundbid.core.auction.rounds import QualificationTracker, RoundEngine
from roundbid.core.clock import Clock
from roundbid.core.collaborators import (
    NotificationLog,
    Notifier,
    PaymentGateway,
    PaymentPurpose,
    RecordingPaymentGateway,
    RecordingRefunds,
    RefundCollaborator,
)
from roundbid.core.config import EngineConfig
from roundbid.core.errors import (
    BidResult,
    CancellationResult,
    ClaimResult,
    EntryResult,
    RejectReason,
    rejected,
)
from roundbid.core.locks import KeyedLocks
from roundbid.core.storage.storage_manager import StorageManager
from roundbid.core.views import (
    AuctionStatusView,
    ClaimStatusView,
    LeaderboardEntryView,
    claim_banner_visible,
)
from roundbid.utils.logger import get_logger
from roundbid.utils.validation import (
    MAX_AMOUNT,
    validate_amount,
    validate_identifier,
    validate_integer,
    validate_round,
    validate_string,
)

logger = get_logger("engine")


class AuctionEngine:
    """
    Facade over a set of timed auctions.

    Usage:
        engine = AuctionEngine(config, clock)
        auction = engine.create_auction("Lamp", start_time, prize_value=500, entry_fee=10)
        engine.pay_entry(auction.auction_id, "alice")
        engine.submit_bid(auction.auction_id, "alice", 1, 100)
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        clock: Optional[Clock] = None,
        storage_manager: Optional[StorageManager] = None,
        payments: Optional[PaymentGateway] = None,
        refunds: Optional[RefundCollaborator] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.config = config or EngineConfig()
        self.clock = clock or Clock()
        self.storage_manager = storage_manager
        self.payments = payments or RecordingPaymentGateway()
        self.refunds = refunds or RecordingRefunds()
        self.notifier = notifier or NotificationLog(storage_manager)

        self.rounds = RoundEngine(
            early_finish_threshold=self.config.early_finish_threshold,
            cancel_window=self.config.cancel_window,
            stale_safety_margin=self.config.stale_safety_margin,
        )
        # Entry, cancellation, claim-payment and bid writes share one lock set
        self._locks = KeyedLocks()
        self.ledger = BidLedger(self.rounds, storage_manager, locks=self._locks)
        self.qualification = QualificationTracker(self.ledger, self.rounds)
        self.resolver = WinnerResolver(
            self.ledger, self.rounds, self.qualification, winner_ranks=self.config.winner_ranks
        )
        self.claims = ClaimEscalator(
            claim_window=self.config.claim_window,
            notifier=self.notifier,
            storage_manager=storage_manager,
        )

        self.cancellation = CancellationGuard(
            self.ledger, self.rounds, self.clock, refunds=self.refunds, locks=self._locks
        )

        self._code_seq = itertools.count(len(self.ledger.auctions) + 1)
        # auction_id -> (current_rank, status) seen by the last sweep
        self._last_seen: Dict[str, Tuple[Optional[int], ClaimStatus]] = {}
        # (auction_id, rank) -> claim payment started by initiate_claim
        self._pending_claims: Dict[Tuple[str, int], str] = {}

        if storage_manager:
            self._reopen_completed()

    # =========================================================================
    # Auctions
    # =========================================================================

    def create_auction(
        self,
        name: str,
        start_time: float,
        prize_value: int,
        entry_fee: int,
        auction_id: Optional[str] = None,
    ) -> Auction:
        """
        Schedule a new auction.

        Raises:
            ValueError: on malformed input
            DuplicateAuction: if `auction_id` is already taken
        """
        checks = [
            validate_string(name, "name"),
            validate_amount(prize_value, "prize_value"),
            validate_integer(entry_fee, "entry_fee", 0, MAX_AMOUNT),
        ]
        if auction_id is not None:
            checks.append(validate_identifier(auction_id, "auction_id"))
        for valid, err in checks:
            if not valid:
                raise ValueError(err)
        if isinstance(start_time, bool) or not isinstance(start_time, (int, float)):
            raise ValueError("start_time must be a number")

        if self.storage_manager:
            seq = self.storage_manager.next_auction_seq()
        else:
            seq = next(self._code_seq)
        code = format_auction_code(seq)

        auction = Auction(
            auction_id=auction_id or code,
            code=code,
            name=name,
            start_time=float(start_time),
            prize_value=prize_value,
            entry_fee=entry_fee,
            round_length=self.config.round_length,
            total_rounds=self.config.total_rounds,
        )
        self.ledger.register_auction(auction)

        logger.info(f"Auction {auction.auction_id} ({code}) '{name}' scheduled at {auction.start_time:.0f}")
        return auction

    def get_auction(self, auction_id: str) -> Auction:
        return self.ledger.get_auction(auction_id)

    def list_auctions(self) -> List[Auction]:
        return sorted(self.ledger.auctions.values(), key=lambda a: a.start_time)

    # =========================================================================
    # Entry
    # =========================================================================

    def request_entry(
        self,
        auction_id: str,
        participant_id: str,
        display_name: Optional[str] = None,
    ) -> EntryResult:
        """
        Start an entry fee payment.

        Entry is open before the start time and while round 1 is open.
        The participant is recorded as pending until the payment is
        confirmed through `confirm_entry_payment`.
        """
        valid, err = validate_identifier(participant_id, "participant_id")
        if not valid:
            return rejected(EntryResult, RejectReason.INVALID_INPUT, err)

        with self._locks.hold(auction_id):
            auction = self.ledger.get_auction(auction_id)
            refusal = self._entry_refusal(auction, participant_id, self.clock.now())
            if refusal is not None:
                return refusal

            payment_ref = self.payments.initiate(
                auction_id, auction.entry_fee, participant_id, PaymentPurpose.ENTRY
            )
            existing = self.ledger.get_participant(auction_id, participant_id)
            self.ledger.upsert_participant(Participant(
                auction_id=auction_id,
                participant_id=participant_id,
                display_name=display_name or (existing.display_name if existing else participant_id),
                payment_ref=payment_ref,
            ))

        logger.debug(f"Entry payment {payment_ref} started for {participant_id} in {auction_id}")
        return EntryResult(accepted=True, payment_ref=payment_ref)

    def confirm_entry_payment(
        self,
        auction_id: str,
        participant_id: str,
        payment_ref: str,
        success: bool = True,
    ) -> EntryResult:
        """
        Payment gateway callback for an entry fee.

        A successful confirmation unlocks bidding. The entry window is
        checked again at confirmation time.
        """
        with self._locks.hold(auction_id):
            auction = self.ledger.get_auction(auction_id)
            now = self.clock.now()
            refusal = self._entry_refusal(auction, participant_id, now)
            if refusal is not None:
                return refusal

            participant = self.ledger.get_participant(auction_id, participant_id)
            if participant is None or participant.payment_ref != payment_ref:
                return rejected(EntryResult, RejectReason.INVALID_INPUT,
                                f"No pending entry payment {payment_ref} for {participant_id}")

            if not success:
                logger.warning(f"Entry payment {payment_ref} failed for {participant_id} in {auction_id}")
                return EntryResult(accepted=False, message="Entry payment failed", payment_ref=payment_ref)

            participant.paid_at = now
            self.ledger.upsert_participant(participant)

        logger.info(f"Participant {participant_id} entered auction {auction_id}")
        return EntryResult(accepted=True, payment_ref=payment_ref)

    def pay_entry(
        self,
        auction_id: str,
        participant_id: str,
        display_name: Optional[str] = None,
    ) -> EntryResult:
        """Request and immediately confirm an entry payment."""
        result = self.request_entry(auction_id, participant_id, display_name)
        if not result.accepted:
            return result
        return self.confirm_entry_payment(auction_id, participant_id, result.payment_ref)

    def _entry_refusal(self, auction: Auction, participant_id: str, now: float) -> Optional[EntryResult]:
        if auction.is_cancelled:
            return rejected(EntryResult, RejectReason.AUCTION_CANCELLED, "Auction has been cancelled")

        participant = self.ledger.get_participant(auction.auction_id, participant_id)
        if participant is not None and participant.has_paid_entry:
            return rejected(EntryResult, RejectReason.ALREADY_ENTERED,
                            f"{participant_id} already entered {auction.auction_id}")

        round_one_bidders = self.ledger.bidder_count(auction.auction_id, 1)
        if not self.rounds.entry_open(auction, now, round_one_bidders):
            return rejected(EntryResult, RejectReason.ENTRY_WINDOW_CLOSED,
                            "Entry closes when round 1 ends")
        return None

    # =========================================================================
    # Bidding & Rounds
    # =========================================================================

    def submit_bid(self, auction_id: str, participant_id: str, round_number: int, amount: int) -> BidResult:
        """Submit a bid at the current Clock time."""
        return self.ledger.submit(auction_id, participant_id, round_number, amount, self.clock.now())

    def status(self, auction_id: str, now: Optional[float] = None) -> AuctionStatus:
        auction = self.ledger.get_auction(auction_id)
        now = self.clock.now() if now is None else now
        return self.rounds.status(auction, now, self.ledger.bidder_count(auction_id, 1))

    def current_round(self, auction_id: str, now: Optional[float] = None) -> Optional[int]:
        return self.status(auction_id, now).round_number

    def is_qualified(self, auction_id: str, participant_id: str, round_number: int) -> bool:
        return self.qualification.is_qualified(auction_id, participant_id, round_number, self.clock.now())

    def status_view(self, auction_id: str) -> AuctionStatusView:
        """Status of an auction, including the degraded-clock flag."""
        auction = self.ledger.get_auction(auction_id)
        now = self.clock.now()
        round_one_bidders = self.ledger.bidder_count(auction_id, 1)
        status = self.rounds.status(auction, now, round_one_bidders)

        completed_at = None
        if status == AuctionStatus.COMPLETED:
            completed_at = self.rounds.completed_at(auction, round_one_bidders)

        return AuctionStatusView(
            auction_id=auction.auction_id,
            code=auction.code,
            name=auction.name,
            status=status,
            current_round=status.round_number,
            seconds_remaining=self.rounds.seconds_remaining(auction, now, round_one_bidders),
            start_time=auction.start_time,
            completed_at=completed_at,
            prize_value=auction.prize_value,
            entry_fee=auction.entry_fee,
            participants=len(self.ledger.paid_participants(auction_id)),
            cancelled_by=auction.cancelled_by,
            clock_stale=self.clock.stale,
            banner_visible=claim_banner_visible(completed_at, now, self.config.banner_visibility),
        )

    def leaderboard(self, auction_id: str, round_number: Optional[int] = None) -> List[LeaderboardEntryView]:
        """
        Ranked bids of a round.

        Args:
            auction_id: Auction
            round_number: Round to rank; defaults to the open round, or the
                deciding round once the auction is over.
        """
        auction = self.ledger.get_auction(auction_id)
        now = self.clock.now()
        if round_number is None:
            round_one_bidders = self.ledger.bidder_count(auction_id, 1)
            round_number = self.rounds.current_round(auction, now, round_one_bidders)
            if round_number is None:
                round_number = self.rounds.deciding_round(auction, round_one_bidders)
        else:
            valid, err = validate_round(round_number, auction.total_rounds)
            if not valid:
                raise ValueError(err)

        return [
            LeaderboardEntryView(
                rank=rank,
                participant_id=bid.participant_id,
                amount=bid.amount,
                submitted_at=bid.submitted_at,
                qualified=self.qualification.is_qualified(auction_id, bid.participant_id, round_number, now),
            )
            for rank, bid in self.ledger.ranked_bids(auction_id, round_number)
        ]

    # =========================================================================
    # Resolution & Claims
    # =========================================================================

    def resolve(self, auction_id: str) -> List[WinnerEntry]:
        """
        Ranked winners of a completed auction; opens its claim ticket.

        Raises:
            AuctionNotCompleted: before completion or for a cancelled auction
        """
        now = self.clock.now()
        winners = self.resolver.resolve(auction_id, now)
        if not self.claims.is_open(auction_id):
            auction = self.ledger.get_auction(auction_id)
            completed_at = self.rounds.completed_at(auction, self.ledger.bidder_count(auction_id, 1))
            self.claims.open(auction_id, winners, completed_at)
        return winners

    def claim_ticket(self, auction_id: str) -> ClaimTicket:
        self.resolve(auction_id)
        return self.claims.ticket(auction_id, self.clock.now())

    def claim_status(self, auction_id: str, participant_id: str) -> ClaimStatus:
        return self.claim_ticket(auction_id).status_for(participant_id)

    def claim_view(self, auction_id: str) -> ClaimStatusView:
        """Claim ticket of a completed auction, including the degraded-clock flag."""
        return ClaimStatusView.from_ticket(self.claim_ticket(auction_id), clock_stale=self.clock.stale)

    def initiate_claim(self, auction_id: str, participant_id: str) -> ClaimResult:
        """
        Start the prize payment of the current claim holder.

        The amount charged is the holder's winning bid.
        """
        self.resolve(auction_id)
        with self._locks.hold(auction_id):
            result = self.claims.check_holder(auction_id, participant_id, self.clock.now())
            if not result.accepted:
                return result
            winner = self.resolver.cached(auction_id)[result.rank - 1]
            payment_ref = self.payments.initiate(
                auction_id, winner.amount, participant_id, PaymentPurpose.CLAIM
            )
            self._pending_claims[(auction_id, result.rank)] = payment_ref

        logger.info(f"Claim payment {payment_ref} started by {participant_id} "
                    f"(rank {result.rank}, {winner.amount}) in {auction_id}")
        return ClaimResult(accepted=True, rank=result.rank, payment_ref=payment_ref)

    def confirm_claim_payment(
        self,
        auction_id: str,
        participant_id: str,
        payment_ref: str,
        success: bool = True,
    ) -> ClaimResult:
        """
        Payment gateway callback for a claim payment.

        Only the reference handed out by `initiate_claim` for the
        participant's rank is accepted, and each reference settles once.
        Success before the holder's deadline marks the ticket CLAIMED. A
        failed payment changes nothing: the holder keeps the window.
        """
        winners = self.resolve(auction_id)
        with self._locks.hold(auction_id):
            rank = next((w.rank for w in winners if w.participant_id == participant_id), None)
            if rank is None or self._pending_claims.get((auction_id, rank)) != payment_ref:
                logger.warning(f"Unknown claim payment {payment_ref} for {participant_id} in {auction_id}")
                return rejected(ClaimResult, RejectReason.INVALID_INPUT,
                                f"No pending claim payment {payment_ref} for {participant_id}")
            del self._pending_claims[(auction_id, rank)]

            now = self.clock.now()
            if not success:
                logger.warning(f"Claim payment {payment_ref} failed for {participant_id} in {auction_id}")
                check = self.claims.check_holder(auction_id, participant_id, now)
                if not check.accepted:
                    return check
                return ClaimResult(accepted=False, message="Claim payment failed",
                                   rank=check.rank, payment_ref=payment_ref)
            return self.claims.record_claim(auction_id, participant_id, now, payment_ref)

    def claim(self, auction_id: str, participant_id: str) -> ClaimResult:
        """Initiate and immediately confirm a claim payment."""
        result = self.initiate_claim(auction_id, participant_id)
        if not result.accepted:
            return result
        return self.confirm_claim_payment(auction_id, participant_id, result.payment_ref)

    def forfeit(self, auction_id: str, participant_id: str) -> ClaimResult:
        """Current holder hands the claim right to the next rank."""
        self.resolve(auction_id)
        return self.claims.forfeit(auction_id, participant_id, self.clock.now())

    # =========================================================================
    # Admin
    # =========================================================================

    def can_cancel(self, auction_id: str) -> bool:
        return self.cancellation.can_cancel(self.ledger.get_auction(auction_id), self.clock.now())

    def cancel(self, auction_id: str, admin_id: str) -> CancellationResult:
        return self.cancellation.cancel(auction_id, admin_id)

    def sweep(self) -> Dict[str, int]:
        """
        Re-read the claim ticket of every completed auction.

        Resolves auctions that completed since the last sweep and delivers
        pending hand-off notifications. Auctions that no longer take bids
        drop their bid locks, and finished tickets drop their sweep entry.

        Returns:
            {"processed": tickets read, "advanced": tickets whose holder or
            status changed since the previous sweep}
        """
        processed = 0
        advanced = 0
        for auction in self.list_auctions():
            aid = auction.auction_id
            status = self.status(aid)
            if status.is_terminal:
                self.ledger.release_bid_locks(aid)
            if status != AuctionStatus.COMPLETED:
                continue

            ticket = self.claim_ticket(aid)
            processed += 1

            previous = self._last_seen.pop(aid, None)
            current = (ticket.current_rank, ticket.status)
            if previous is None:
                if ticket.is_terminal:
                    # Finished before this sweep saw it, or already reported
                    continue
                previous = (1, ClaimStatus.WIN_ELIGIBLE) if ticket.ranks else current
            if current != previous:
                advanced += 1
            if not ticket.is_terminal:
                self._last_seen[aid] = current

        if advanced:
            logger.info(f"Sweep processed {processed} claim tickets, {advanced} advanced")
        return {"processed": processed, "advanced": advanced}

    # =========================================================================
    # Persistence
    # =========================================================================

    def _reopen_completed(self) -> None:
        """Reopen claim tickets of auctions that completed before a restart."""
        reopened = 0
        for auction in self.list_auctions():
            if self.status(auction.auction_id) == AuctionStatus.COMPLETED:
                self.resolve(auction.auction_id)
                reopened += 1
        if reopened:
            logger.info(f"Reopened {reopened} claim tickets from storage")

    def stats(self) -> dict:
        stats = self.ledger.stats()
        stats["claim_tickets"] = len(self.claims.open_auctions())
        stats["clock_stale"] = self.clock.stale
        return stats
