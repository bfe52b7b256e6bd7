"""
External collaborators of the engine.

The engine never captures payments, issues refunds or delivers messages
itself. It calls out through the small protocols below. In-memory
implementations are provided for the CLI, demos and tests.
"""

import itertools
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Protocol, Set, Tuple, runtime_checkable

from roundbid.utils.logger import get_logger

if TYPE_CHECKING:
    from roundbid.core.auction.models import Participant
    from roundbid.core.storage.storage_manager import StorageManager

logger = get_logger("collaborators")


# =============================================================================
# Payments
# =============================================================================


class PaymentPurpose(str, Enum):
    ENTRY = "ENTRY"
    CLAIM = "CLAIM"


@dataclass(frozen=True)
class PaymentRequest:
    reference: str
    auction_id: str
    participant_id: str
    amount: int
    purpose: PaymentPurpose


@runtime_checkable
class PaymentGateway(Protocol):
    """Starts a payment; the outcome arrives later through an engine callback."""

    def initiate(self, auction_id: str, amount: int, participant_id: str, purpose: PaymentPurpose) -> str:
        ...


class RecordingPaymentGateway:
    """Gateway that only records requests and hands out references."""

    def __init__(self, prefix: str = "pay"):
        self.prefix = prefix
        self.requests: List[PaymentRequest] = []
        self._counter = itertools.count(1)

    def initiate(self, auction_id: str, amount: int, participant_id: str, purpose: PaymentPurpose) -> str:
        reference = f"{self.prefix}-{purpose.value.lower()}-{next(self._counter):06d}"
        self.requests.append(PaymentRequest(reference, auction_id, participant_id, amount, purpose))
        logger.debug(f"Payment initiated: {reference} {purpose.value} {amount} for {participant_id}")
        return reference


# =============================================================================
# Refunds
# =============================================================================


@runtime_checkable
class RefundCollaborator(Protocol):
    """Issues entry-fee refunds when an auction is cancelled."""

    def issue_refunds(self, auction_id: str, participants: List["Participant"]) -> None:
        ...


class RecordingRefunds:
    """Refund collaborator that records each batch."""

    def __init__(self):
        self.batches: Dict[str, List["Participant"]] = {}

    def issue_refunds(self, auction_id: str, participants: List["Participant"]) -> None:
        self.batches[auction_id] = list(participants)
        logger.info(f"Refunds requested for auction {auction_id}: {len(participants)} participants")


# =============================================================================
# Notifications
# =============================================================================

NotificationKey = Tuple[str, int, str]  # (auction_id, rank, status)


@dataclass(frozen=True)
class ClaimNotification:
    """A claim state a participant should be told about."""
    auction_id: str
    rank: int
    participant_id: str
    status: str
    deadline: Optional[float]
    at: float

    @property
    def key(self) -> NotificationKey:
        return (self.auction_id, self.rank, self.status)


@runtime_checkable
class Notifier(Protocol):
    """
    Delivers claim notifications and owns their acknowledgement record.

    A notification is sent at most once per (auction_id, rank, status).
    """

    def is_acknowledged(self, key: NotificationKey) -> bool:
        ...

    def notify(self, notification: ClaimNotification) -> None:
        ...


class NotificationLog:
    """
    Notifier that records deliveries and acknowledgements.

    With a storage manager the acknowledgement record survives restarts.
    """

    def __init__(self, storage_manager: Optional["StorageManager"] = None):
        self.storage_manager = storage_manager
        self.delivered: List[ClaimNotification] = []
        self._acknowledged: Set[NotificationKey] = set()
        self._lock = threading.Lock()

        if storage_manager:
            self._acknowledged.update(storage_manager.load_notification_keys())

    def is_acknowledged(self, key: NotificationKey) -> bool:
        return key in self._acknowledged

    def notify(self, notification: ClaimNotification) -> None:
        with self._lock:
            if notification.key in self._acknowledged:
                return
            self._acknowledged.add(notification.key)
            self.delivered.append(notification)
            if self.storage_manager:
                self.storage_manager.save_notification(notification)

        logger.info(f"Notify {notification.participant_id}: auction {notification.auction_id} "
                    f"rank {notification.rank} is {notification.status}")

    def for_participant(self, participant_id: str) -> List[ClaimNotification]:
        return [n for n in self.delivered if n.participant_id == participant_id]
