from pathlib import Path
from typing import List, Set, Tuple

from roundbid.core.auction.claims import ClaimEvent, ClaimEventKind
from roundbid.core.auction.models import Auction, Bid, Participant
from roundbid.core.collaborators import ClaimNotification
from roundbid.core.errors import StorageError
from roundbid.core.storage.sqlite_adapter import SQLiteAdapter
from roundbid.utils.logger import get_logger

logger = get_logger("storage.manager")


class StorageManager:
    """
    Manages persistent storage for the engine.

    Maps engine records to SQLite rows. Handles:
    - Auctions and their cancellation stamp
    - Participants and entry payments
    - The append-only bid log
    - Claim events and notification acknowledgements
    """

    def __init__(self, data_dir: Path, db_name: str = "roundbid.db"):
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.adapter = SQLiteAdapter(self.db_path)

        logger.info(f"StorageManager initialized at {self.db_path}")

    def close(self):
        self.adapter.close()

    # =========================================================================
    # Auctions
    # =========================================================================

    def save_auction(self, auction: Auction):
        self.adapter.insert_auction((
            auction.auction_id,
            auction.code,
            auction.name,
            auction.start_time,
            auction.prize_value,
            auction.entry_fee,
            auction.round_length,
            auction.total_rounds,
            auction.cancelled_at,
            auction.cancelled_by,
        ))

    def save_cancellation(self, auction_id: str, cancelled_at: float, cancelled_by: str):
        self.adapter.set_cancelled(auction_id, cancelled_at, cancelled_by)

    def load_auctions(self) -> List[Auction]:
        return [
            Auction(
                auction_id=row['auction_id'],
                code=row['code'],
                name=row['name'],
                start_time=row['start_time'],
                prize_value=row['prize_value'],
                entry_fee=row['entry_fee'],
                round_length=row['round_length'],
                total_rounds=row['total_rounds'],
                cancelled_at=row['cancelled_at'],
                cancelled_by=row['cancelled_by'],
            )
            for row in self.adapter.get_all_auctions()
        ]

    def next_auction_seq(self) -> int:
        return self.adapter.next_counter("auction_code")

    # =========================================================================
    # Participants & Bids
    # =========================================================================

    def save_participant(self, participant: Participant):
        self.adapter.upsert_participant((
            participant.auction_id,
            participant.participant_id,
            participant.display_name,
            participant.paid_at,
            participant.payment_ref,
        ))

    def load_participants(self) -> List[Participant]:
        return [
            Participant(
                auction_id=row['auction_id'],
                participant_id=row['participant_id'],
                display_name=row['display_name'],
                paid_at=row['paid_at'],
                payment_ref=row['payment_ref'],
            )
            for row in self.adapter.get_all_participants()
        ]

    def save_bid(self, bid: Bid):
        """Append a bid. An existing bid for the same round is a ledger bug."""
        stored = self.adapter.insert_bid((
            bid.auction_id,
            bid.participant_id,
            bid.round_number,
            bid.amount,
            bid.submitted_at,
            bid.seq,
        ))
        if not stored:
            raise StorageError(
                f"Bid for {bid.participant_id} in round {bid.round_number} of "
                f"{bid.auction_id} already persisted"
            )

    def load_bids(self) -> List[Bid]:
        return [
            Bid(
                auction_id=row['auction_id'],
                participant_id=row['participant_id'],
                round_number=row['round_number'],
                amount=row['amount'],
                submitted_at=row['submitted_at'],
                seq=row['seq'],
            )
            for row in self.adapter.get_all_bids()
        ]

    # =========================================================================
    # Claims & Notifications
    # =========================================================================

    def save_claim_event(self, event: ClaimEvent):
        stored = self.adapter.insert_claim_event((
            event.auction_id,
            event.rank,
            event.kind.value,
            event.at,
            event.payment_ref,
        ))
        if not stored:
            raise StorageError(f"Claim event for rank {event.rank} of {event.auction_id} already persisted")

    def load_claim_events(self) -> List[ClaimEvent]:
        return [
            ClaimEvent(
                auction_id=row['auction_id'],
                rank=row['rank'],
                kind=ClaimEventKind(row['kind']),
                at=row['at'],
                payment_ref=row['payment_ref'],
            )
            for row in self.adapter.get_all_claim_events()
        ]

    def save_notification(self, notification: ClaimNotification):
        self.adapter.insert_notification((
            notification.auction_id,
            notification.rank,
            notification.status,
            notification.participant_id,
            notification.at,
        ))

    def load_notification_keys(self) -> Set[Tuple[str, int, str]]:
        return set(self.adapter.get_notification_keys())
