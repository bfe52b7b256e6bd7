"""
Unit tests for admin cancellation.
"""

import pytest

from roundbid.core.auction import (
    Auction,
    AuctionStatus,
    BidLedger,
    CancellationGuard,
    Participant,
    RoundEngine,
)
from roundbid.core.clock import ManualClock
from roundbid.core.collaborators import RecordingRefunds
from roundbid.core.errors import RejectReason

START = 1_000_000.0


@pytest.fixture
def clock():
    return ManualClock(START - 600)


@pytest.fixture
def refunds():
    return RecordingRefunds()


@pytest.fixture
def guard(clock, refunds):
    rounds = RoundEngine(cancel_window=720, stale_safety_margin=60)
    ledger = BidLedger(rounds)
    ledger.register_auction(Auction("a1", "HA000001", "Lamp", START, 1000, 10))
    ledger.upsert_participant(Participant("a1", "alice", "Alice", paid_at=START - 900))
    ledger.upsert_participant(Participant("a1", "bob", "Bob", paid_at=START - 800))
    ledger.upsert_participant(Participant("a1", "carl", "Carl"))
    return CancellationGuard(ledger, rounds, clock, refunds=refunds)


class TestCancel:

    def test_cancel_during_entry(self, guard, refunds):
        result = guard.cancel("a1", "admin")
        assert result.accepted
        assert result.refunded == 2
        assert [p.participant_id for p in refunds.batches["a1"]] == ["alice", "bob"]

        auction = guard.ledger.get_auction("a1")
        assert auction.cancelled_by == "admin"
        assert guard.rounds.status(auction, START + 100, 0) == AuctionStatus.CANCELLED

    def test_cancel_inside_window(self, guard, clock):
        clock.set(START + 720)
        assert guard.cancel("a1", "admin").accepted

    def test_refused_after_window(self, guard, clock, refunds):
        clock.set(START + 13 * 60)
        result = guard.cancel("a1", "admin")
        assert result.reason == RejectReason.CANCELLATION_WINDOW_CLOSED
        assert not guard.ledger.get_auction("a1").is_cancelled
        assert refunds.batches == {}

    def test_refused_when_stale_near_boundary(self, guard, clock):
        clock.set(START + 700)
        clock.mark_stale()
        assert not guard.can_cancel(guard.ledger.get_auction("a1"), clock.now())
        assert guard.cancel("a1", "admin").reason == RejectReason.CANCELLATION_WINDOW_CLOSED

    def test_second_cancel_refused(self, guard):
        assert guard.cancel("a1", "admin").accepted
        assert guard.cancel("a1", "admin").reason == RejectReason.CANCELLATION_WINDOW_CLOSED

    def test_invalid_admin(self, guard):
        assert guard.cancel("a1", "").reason == RejectReason.INVALID_INPUT

    def test_bids_rejected_after_cancel(self, guard, clock):
        guard.cancel("a1", "admin")
        clock.set(START + 10)
        result = guard.ledger.submit("a1", "alice", 1, 100, clock.now())
        assert result.reason == RejectReason.AUCTION_CANCELLED
