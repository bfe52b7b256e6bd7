"""
Bid Ledger - Append-only record of entries and bids.

Validation order for a submission:
1. Entry fee paid                        (else NO_ENTRY)
2. Round equals the open round           (else WRONG_ROUND)
3. No bid yet for this round             (else DUPLICATE_BID)
4. Round > 1: above previous round's bid (else BID_NOT_PROGRESSIVE)

Accepted bids are immutable: there is no update or delete path. Each
(auction, participant, round) key is written under its own lock so two
concurrent submissions cannot both pass the duplicate check.
"""

import itertools
from collections import defaultdict
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from roundbid.core.auction.models import Auction, Bid, Participant
from roundbid.core.auction.rounds import RoundEngine
from roundbid.core.errors import (
    AuctionNotFound,
    BidResult,
    DuplicateAuction,
    RejectReason,
    rejected,
)
from roundbid.core.locks import KeyedLocks
from roundbid.utils.logger import get_logger
from roundbid.utils.validation import validate_bid_request

if TYPE_CHECKING:
    from roundbid.core.storage.storage_manager import StorageManager

logger = get_logger("ledger")


class BidLedger:
    """
    Per-auction store of participants and accepted bids.

    Attributes:
        auctions: auction_id -> Auction
        participants: auction_id -> participant_id -> Participant
        bids: auction_id -> round -> participant_id -> Bid
    """

    def __init__(
        self,
        rounds: RoundEngine,
        storage_manager: Optional["StorageManager"] = None,
        locks: Optional[KeyedLocks] = None,
    ):
        """
        Initialize the ledger.

        Args:
            rounds: Round engine deciding the open round
            storage_manager: Persistence manager. None = in-memory only.
            locks: Lock set shared with cancellation, so a bid and a cancel
                of the same auction serialize on the (auction_id,) key
        """
        self.rounds = rounds
        self.storage_manager = storage_manager

        self.auctions: Dict[str, Auction] = {}
        self.participants: Dict[str, Dict[str, Participant]] = defaultdict(dict)
        self.bids: Dict[str, Dict[int, Dict[str, Bid]]] = defaultdict(lambda: defaultdict(dict))

        self._seq = itertools.count(1)
        self._locks = locks if locks is not None else KeyedLocks()

        if storage_manager:
            self._load_from_storage()

    # =========================================================================
    # Auctions & Participants
    # =========================================================================

    def register_auction(self, auction: Auction, persist: bool = True) -> None:
        """Add an auction to the ledger."""
        if auction.auction_id in self.auctions:
            raise DuplicateAuction(f"Auction {auction.auction_id} already exists")
        self.auctions[auction.auction_id] = auction
        if persist and self.storage_manager:
            self.storage_manager.save_auction(auction)

    def get_auction(self, auction_id: str) -> Auction:
        auction = self.auctions.get(auction_id)
        if auction is None:
            raise AuctionNotFound(f"Unknown auction {auction_id}")
        return auction

    def get_participant(self, auction_id: str, participant_id: str) -> Optional[Participant]:
        return self.participants.get(auction_id, {}).get(participant_id)

    def list_participants(self, auction_id: str) -> List[Participant]:
        return list(self.participants.get(auction_id, {}).values())

    def paid_participants(self, auction_id: str) -> List[Participant]:
        """Participants who paid the entry fee, in payment order."""
        paid = [p for p in self.list_participants(auction_id) if p.has_paid_entry]
        return sorted(paid, key=lambda p: p.paid_at)

    def upsert_participant(self, participant: Participant) -> None:
        """Record a participant (pending or paid)."""
        self.participants[participant.auction_id][participant.participant_id] = participant
        if self.storage_manager:
            self.storage_manager.save_participant(participant)

    # =========================================================================
    # Bid Access
    # =========================================================================

    def bid_for(self, auction_id: str, participant_id: str, round_number: int) -> Optional[Bid]:
        return self.bids.get(auction_id, {}).get(round_number, {}).get(participant_id)

    def bids_for_round(self, auction_id: str, round_number: int) -> List[Bid]:
        """Accepted bids of a round, in ingestion order."""
        round_bids = self.bids.get(auction_id, {}).get(round_number, {})
        return sorted(round_bids.values(), key=lambda b: b.seq)

    def bidder_count(self, auction_id: str, round_number: int) -> int:
        return len(self.bids.get(auction_id, {}).get(round_number, {}))

    def bids_by_participant(self, auction_id: str, participant_id: str) -> Dict[int, Bid]:
        """round -> Bid for one participant."""
        result = {}
        for round_number, round_bids in self.bids.get(auction_id, {}).items():
            if participant_id in round_bids:
                result[round_number] = round_bids[participant_id]
        return result

    def open_round(self, auction_id: str, now: float) -> Optional[int]:
        """Open round of an auction at `now`."""
        auction = self.get_auction(auction_id)
        return self.rounds.current_round(auction, now, self.bidder_count(auction_id, 1))

    # =========================================================================
    # Submission
    # =========================================================================

    def submit(
        self,
        auction_id: str,
        participant_id: str,
        round_number: int,
        amount: int,
        time: float,
    ) -> BidResult:
        """
        Validate and record a bid.

        Args:
            auction_id: Auction being bid on
            participant_id: Bidder
            round_number: Round the bidder targets
            amount: Bid amount
            time: Submission time (Clock)

        Returns:
            BidResult; accepted results carry the stored Bid
        """
        auction = self.get_auction(auction_id)

        valid, err = validate_bid_request(
            auction_id, participant_id, round_number, amount, auction.total_rounds
        )
        if not valid:
            return rejected(BidResult, RejectReason.INVALID_INPUT, err)

        if auction.is_cancelled:
            return rejected(BidResult, RejectReason.AUCTION_CANCELLED, "Auction has been cancelled")

        with self._locks.hold(auction_id, participant_id, round_number):
            participant = self.get_participant(auction_id, participant_id)
            if participant is None or not participant.has_paid_entry:
                return rejected(BidResult, RejectReason.NO_ENTRY, "Entry fee not paid")

            open_round = self.open_round(auction_id, time)
            if open_round != round_number:
                return rejected(
                    BidResult,
                    RejectReason.WRONG_ROUND,
                    f"Round {round_number} is not open (open round: {open_round})",
                )

            if self.bid_for(auction_id, participant_id, round_number) is not None:
                return rejected(
                    BidResult,
                    RejectReason.DUPLICATE_BID,
                    f"Already bid in round {round_number}",
                )

            if round_number > 1:
                previous = self.bid_for(auction_id, participant_id, round_number - 1)
                if previous is not None and amount <= previous.amount:
                    return rejected(
                        BidResult,
                        RejectReason.BID_NOT_PROGRESSIVE,
                        f"Bid {amount} must exceed round {round_number - 1} bid {previous.amount}",
                    )

            with self._locks.hold(auction_id):
                # A cancel may have landed since the first check
                if auction.is_cancelled:
                    return rejected(BidResult, RejectReason.AUCTION_CANCELLED, "Auction has been cancelled")

                bid = Bid(
                    auction_id=auction_id,
                    participant_id=participant_id,
                    round_number=round_number,
                    amount=amount,
                    submitted_at=time,
                    seq=next(self._seq),
                )
                if self.storage_manager:
                    self.storage_manager.save_bid(bid)
                self.bids[auction_id][round_number][participant_id] = bid

        logger.debug(f"Bid accepted: auction={auction_id} participant={participant_id} "
                     f"round={round_number} amount={amount}")
        return BidResult(accepted=True, bid=bid)

    def release_bid_locks(self, auction_id: str) -> int:
        """Drop the per-bid locks of an auction that no longer accepts bids."""
        return self._locks.discard_where(lambda key: len(key) == 3 and key[0] == auction_id)

    # =========================================================================
    # Leaderboard
    # =========================================================================

    def ranked_bids(self, auction_id: str, round_number: int) -> List[Tuple[int, Bid]]:
        """(rank, bid) pairs of a round: highest amount first, earliest wins ties."""
        ordered = sorted(self.bids_for_round(auction_id, round_number), key=Bid.sort_key)
        return [(index + 1, bid) for index, bid in enumerate(ordered)]

    # =========================================================================
    # Persistence
    # =========================================================================

    def _load_from_storage(self) -> None:
        """Rebuild in-memory state from the storage manager."""
        for auction in self.storage_manager.load_auctions():
            self.auctions[auction.auction_id] = auction

        for participant in self.storage_manager.load_participants():
            self.participants[participant.auction_id][participant.participant_id] = participant

        max_seq = 0
        bid_count = 0
        for bid in self.storage_manager.load_bids():
            self.bids[bid.auction_id][bid.round_number][bid.participant_id] = bid
            max_seq = max(max_seq, bid.seq)
            bid_count += 1
        self._seq = itertools.count(max_seq + 1)

        logger.info(f"Ledger loaded: {len(self.auctions)} auctions, {bid_count} bids")

    def stats(self) -> dict:
        """Ledger statistics."""
        return {
            "auctions": len(self.auctions),
            "participants": sum(len(p) for p in self.participants.values()),
            "bids": sum(
                len(round_bids)
                for rounds in self.bids.values()
                for round_bids in rounds.values()
            ),
        }
