"""
Claim Escalator - Rank-ordered prize claim rights after completion.

At completion time T the rank-1 winner holds the claim right until
T + claim_window. Ranks 2 and 3 wait. When the holder's window ends
without a claim, or the holder forfeits, the right passes to the next rank
with a fresh window starting at the hand-off moment:

    rank 1: [T,            T + W)
    rank 2: [hand-off_1,   hand-off_1 + W)   hand-off_1 = expiry or forfeit time
    rank 3: [hand-off_2,   hand-off_2 + W)

A successful claim payment is terminal. When the last rank expires the
prize is unclaimed (terminal).

The ticket is never advanced by a timer. It is derived on demand from the
winners, T, the recorded claim/forfeit events and the clock, so a late
reader gets the same hand-off times as a punctual one.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from roundbid.core.auction.models import WinnerEntry
from roundbid.core.collaborators import ClaimNotification, Notifier
from roundbid.core.errors import AuctionNotCompleted, ClaimResult, RejectReason, rejected
from roundbid.core.locks import KeyedLocks
from roundbid.utils.logger import get_logger

if TYPE_CHECKING:
    from roundbid.core.storage.storage_manager import StorageManager

logger = get_logger("claims")

DEFAULT_CLAIM_WINDOW = 15 * 60


# =============================================================================
# Enums
# =============================================================================


class ClaimStatus(str, Enum):
    """Claim state of a ranked winner (or of a non-winner)."""
    WIN_ELIGIBLE = "WIN_ELIGIBLE"    # Holds the claim right now
    WAITING = "WAITING"              # Queued behind a higher rank
    CLAIMED = "CLAIMED"              # Paid and received the prize
    EXPIRED = "EXPIRED"              # Window passed, forfeited, or prize went to another rank
    NOT_QUALIFIED = "NOT_QUALIFIED"  # Outside the top ranks


class ClaimEventKind(str, Enum):
    CLAIMED = "CLAIMED"
    FORFEITED = "FORFEITED"


# =============================================================================
# Data Structures
# =============================================================================


@dataclass(frozen=True)
class ClaimEvent:
    """A recorded holder action. Events are the only mutable claim facts."""
    auction_id: str
    rank: int
    kind: ClaimEventKind
    at: float
    payment_ref: Optional[str] = None


@dataclass
class RankClaim:
    """Derived claim state of one ranked winner."""
    rank: int
    participant_id: str
    amount: int
    status: ClaimStatus
    scheduled_start: float
    window_start: Optional[float] = None
    deadline: Optional[float] = None
    ended_at: Optional[float] = None


@dataclass
class ClaimTicket:
    """
    Snapshot of an auction's claim lifecycle at a point in time.

    Attributes:
        auction_id: Auction
        completed_at: Completion time T
        current_rank: Rank holding the claim right, None when terminal
        deadline: Current holder's deadline, None when terminal
        status: WIN_ELIGIBLE while a holder exists, else CLAIMED or EXPIRED
        ranks: Per-rank detail, rank 1 first
        claimed_by: Participant who claimed, if any
    """
    auction_id: str
    completed_at: float
    current_rank: Optional[int]
    deadline: Optional[float]
    status: ClaimStatus
    ranks: List[RankClaim] = field(default_factory=list)
    claimed_by: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (ClaimStatus.CLAIMED, ClaimStatus.EXPIRED)

    @property
    def prize_unclaimed(self) -> bool:
        return self.status == ClaimStatus.EXPIRED

    @property
    def holder(self) -> Optional[RankClaim]:
        if self.current_rank is None:
            return None
        return self.rank_claim(self.current_rank)

    def rank_claim(self, rank: int) -> Optional[RankClaim]:
        for rc in self.ranks:
            if rc.rank == rank:
                return rc
        return None

    def claim_for(self, participant_id: str) -> Optional[RankClaim]:
        for rc in self.ranks:
            if rc.participant_id == participant_id:
                return rc
        return None

    def status_for(self, participant_id: str) -> ClaimStatus:
        rc = self.claim_for(participant_id)
        return rc.status if rc else ClaimStatus.NOT_QUALIFIED


# =============================================================================
# Claim Escalator
# =============================================================================


class ClaimEscalator:
    """
    Owns claim tickets of completed auctions.

    Writes (claims, forfeits) are serialized per auction. Reads derive the
    ticket and deliver any notification not yet acknowledged.
    """

    def __init__(
        self,
        claim_window: float = DEFAULT_CLAIM_WINDOW,
        notifier: Optional[Notifier] = None,
        storage_manager: Optional["StorageManager"] = None,
    ):
        self.claim_window = claim_window
        self.notifier = notifier
        self.storage_manager = storage_manager

        # auction_id -> (completed_at, winners)
        self._tickets: Dict[str, Tuple[float, List[WinnerEntry]]] = {}
        # auction_id -> rank -> event
        self._events: Dict[str, Dict[int, ClaimEvent]] = {}
        self._locks = KeyedLocks()

        if storage_manager:
            for event in storage_manager.load_claim_events():
                self._events.setdefault(event.auction_id, {})[event.rank] = event

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def open(self, auction_id: str, winners: List[WinnerEntry], completed_at: float) -> None:
        """
        Create the claim ticket of a completed auction.

        Idempotent: reopening an existing ticket keeps the original winners.
        """
        with self._locks.hold(auction_id):
            if auction_id in self._tickets:
                return
            self._tickets[auction_id] = (completed_at, list(winners))

        if winners:
            logger.info(f"Claim ticket opened for auction {auction_id}: rank 1 "
                        f"{winners[0].participant_id} until {completed_at + self.claim_window:.0f}")

    def is_open(self, auction_id: str) -> bool:
        return auction_id in self._tickets

    def open_auctions(self) -> List[str]:
        return list(self._tickets)

    def events(self, auction_id: str) -> List[ClaimEvent]:
        return sorted(self._events.get(auction_id, {}).values(), key=lambda e: e.rank)

    # =========================================================================
    # Derivation
    # =========================================================================

    def _derive(self, auction_id: str, at: float) -> ClaimTicket:
        entry = self._tickets.get(auction_id)
        if entry is None:
            raise AuctionNotCompleted(f"No claim ticket for auction {auction_id}")
        completed_at, winners = entry
        events = self._events.get(auction_id, {})

        ranks = [
            RankClaim(
                rank=w.rank,
                participant_id=w.participant_id,
                amount=w.amount,
                status=ClaimStatus.WAITING,
                scheduled_start=completed_at + (w.rank - 1) * self.claim_window,
            )
            for w in winners
        ]

        ticket = ClaimTicket(
            auction_id=auction_id,
            completed_at=completed_at,
            current_rank=None,
            deadline=None,
            status=ClaimStatus.EXPIRED,
            ranks=ranks,
        )

        window_start = completed_at
        for index, rc in enumerate(ranks):
            rc.window_start = window_start
            rc.deadline = window_start + self.claim_window

            event = events.get(rc.rank)
            if event is not None and event.at <= at and event.at < rc.deadline:
                rc.ended_at = event.at
                if event.kind == ClaimEventKind.CLAIMED:
                    rc.status = ClaimStatus.CLAIMED
                    ticket.status = ClaimStatus.CLAIMED
                    ticket.claimed_by = rc.participant_id
                    for later in ranks[index + 1:]:
                        later.status = ClaimStatus.EXPIRED
                        later.ended_at = event.at
                    return ticket
                rc.status = ClaimStatus.EXPIRED
                window_start = event.at
                continue

            if at >= rc.deadline:
                rc.status = ClaimStatus.EXPIRED
                rc.ended_at = rc.deadline
                window_start = rc.deadline
                continue

            rc.status = ClaimStatus.WIN_ELIGIBLE
            ticket.current_rank = rc.rank
            ticket.deadline = rc.deadline
            ticket.status = ClaimStatus.WIN_ELIGIBLE
            return ticket

        return ticket

    def ticket(self, auction_id: str, now: float) -> ClaimTicket:
        """
        Current claim ticket of an auction.

        Delivers notifications for states not yet acknowledged.
        """
        with self._locks.hold(auction_id):
            ticket = self._derive(auction_id, now)
            self._notify(ticket, now)
        return ticket

    def status_for(self, auction_id: str, participant_id: str, now: float) -> ClaimStatus:
        return self.ticket(auction_id, now).status_for(participant_id)

    def _notify(self, ticket: ClaimTicket, now: float) -> None:
        if self.notifier is None:
            return
        for rc in ticket.ranks:
            key = (ticket.auction_id, rc.rank, rc.status.value)
            if self.notifier.is_acknowledged(key):
                continue
            self.notifier.notify(ClaimNotification(
                auction_id=ticket.auction_id,
                rank=rc.rank,
                participant_id=rc.participant_id,
                status=rc.status.value,
                deadline=rc.deadline if rc.status == ClaimStatus.WIN_ELIGIBLE else None,
                at=now,
            ))

    # =========================================================================
    # Holder Actions
    # =========================================================================

    def check_holder(self, auction_id: str, participant_id: str, at: float) -> ClaimResult:
        """Whether `participant_id` may act on the claim right at `at`."""
        ticket = self._derive(auction_id, at)
        rc = ticket.claim_for(participant_id)

        if ticket.is_terminal:
            if rc is not None and rc.status == ClaimStatus.EXPIRED and rc.ended_at == rc.deadline:
                return rejected(ClaimResult, RejectReason.CLAIM_WINDOW_EXPIRED,
                                f"Claim window for rank {rc.rank} closed", rank=rc.rank)
            return rejected(ClaimResult, RejectReason.ALREADY_RESOLVED,
                            f"Claim already {ticket.status.value}", rank=rc.rank if rc else None)

        if rc is None:
            return rejected(ClaimResult, RejectReason.NOT_CURRENT_HOLDER,
                            f"{participant_id} is not a ranked winner")

        if rc.status == ClaimStatus.EXPIRED:
            if rc.ended_at == rc.deadline:
                return rejected(ClaimResult, RejectReason.CLAIM_WINDOW_EXPIRED,
                                f"Claim window for rank {rc.rank} closed", rank=rc.rank)
            return rejected(ClaimResult, RejectReason.ALREADY_RESOLVED,
                            f"Rank {rc.rank} already forfeited", rank=rc.rank)

        if rc.status != ClaimStatus.WIN_ELIGIBLE:
            return rejected(ClaimResult, RejectReason.NOT_CURRENT_HOLDER,
                            f"Rank {ticket.current_rank} currently holds the claim right",
                            rank=rc.rank)

        return ClaimResult(accepted=True, rank=rc.rank)

    def record_claim(
        self,
        auction_id: str,
        participant_id: str,
        at: float,
        payment_ref: Optional[str] = None,
    ) -> ClaimResult:
        """Record a successful claim payment reported at `at`."""
        return self._record(auction_id, participant_id, at, ClaimEventKind.CLAIMED, payment_ref)

    def forfeit(self, auction_id: str, participant_id: str, at: float) -> ClaimResult:
        """Holder gives up the claim right; the next rank becomes eligible at `at`."""
        return self._record(auction_id, participant_id, at, ClaimEventKind.FORFEITED, None)

    def _record(
        self,
        auction_id: str,
        participant_id: str,
        at: float,
        kind: ClaimEventKind,
        payment_ref: Optional[str],
    ) -> ClaimResult:
        with self._locks.hold(auction_id):
            result = self.check_holder(auction_id, participant_id, at)
            if not result.accepted:
                logger.info(f"Claim {kind.value.lower()} refused for {participant_id} "
                            f"in auction {auction_id}: {result.message}")
                return result

            rank_events = self._events.setdefault(auction_id, {})
            if result.rank in rank_events:
                return rejected(ClaimResult, RejectReason.ALREADY_RESOLVED,
                                f"Rank {result.rank} already acted", rank=result.rank)

            event = ClaimEvent(auction_id, result.rank, kind, at, payment_ref)
            if self.storage_manager:
                self.storage_manager.save_claim_event(event)
            rank_events[result.rank] = event

            ticket = self._derive(auction_id, at)
            self._notify(ticket, at)

        if kind == ClaimEventKind.CLAIMED:
            logger.info(f"Prize of auction {auction_id} claimed by {participant_id} (rank {result.rank})")
        elif ticket.current_rank is not None:
            logger.info(f"Rank {result.rank} forfeited auction {auction_id}; rank "
                        f"{ticket.current_rank} eligible until {ticket.deadline:.0f}")
        else:
            logger.warning(f"Rank {result.rank} forfeited auction {auction_id}; prize unclaimed")

        return ClaimResult(accepted=True, rank=result.rank, payment_ref=payment_ref)
