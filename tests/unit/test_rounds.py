"""
Unit tests for the round timeline and qualification.

Tests cover:
1. Status derivation from start time and elapsed time
2. Early completion after round 1
3. Entry and cancellation windows
4. Sticky disqualification after a missed round
"""

import pytest

from roundbid.core.auction import (
    Auction,
    AuctionStatus,
    BidLedger,
    Participant,
    QualificationTracker,
    RoundEngine,
)

START = 1_000_000.0
L = 900


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def auction():
    return Auction(
        auction_id="a1",
        code="HA000001",
        name="Lamp",
        start_time=START,
        prize_value=1000,
        entry_fee=10,
    )


@pytest.fixture
def rounds():
    return RoundEngine(early_finish_threshold=3, cancel_window=720, stale_safety_margin=60)


@pytest.fixture
def tracker(auction, rounds):
    ledger = BidLedger(rounds)
    ledger.register_auction(auction)
    for pid in ("alice", "bob", "carol", "dave"):
        ledger.upsert_participant(Participant("a1", pid, pid.title(), paid_at=START - 100))
    ledger.upsert_participant(Participant("a1", "erin", "Erin"))
    return ledger, QualificationTracker(ledger, rounds)


# =============================================================================
# Status Tests
# =============================================================================


class TestStatus:
    """Tests for RoundEngine.status."""

    def test_entry_before_start(self, rounds, auction):
        assert rounds.status(auction, START - 1, 0) == AuctionStatus.ENTRY
        assert rounds.current_round(auction, START - 1, 0) is None

    def test_round_boundaries(self, rounds, auction):
        assert rounds.status(auction, START, 5) == AuctionStatus.ROUND_1
        assert rounds.status(auction, START + L - 1, 5) == AuctionStatus.ROUND_1
        assert rounds.status(auction, START + L, 5) == AuctionStatus.ROUND_2
        assert rounds.status(auction, START + 2 * L, 5) == AuctionStatus.ROUND_3
        assert rounds.status(auction, START + 4 * L - 1, 5) == AuctionStatus.ROUND_4

    def test_completed_after_round_four(self, rounds, auction):
        assert rounds.status(auction, START + 4 * L, 5) == AuctionStatus.COMPLETED
        assert rounds.status(auction, START + 10 * L, 5) == AuctionStatus.COMPLETED

    def test_current_round_is_pure(self, rounds, auction):
        """Same inputs always give the same round."""
        now = START + 2 * L + 17
        answers = {rounds.current_round(auction, now, 4) for _ in range(10)}
        assert answers == {3}

    def test_cancelled_overrides_time(self, rounds, auction):
        auction.cancelled_at = START + 60
        assert rounds.status(auction, START + 2 * L, 5) == AuctionStatus.CANCELLED
        assert rounds.status(auction, START - 10, 5) == AuctionStatus.CANCELLED

    def test_seconds_remaining(self, rounds, auction):
        assert rounds.seconds_remaining(auction, START - 30, 0) == 30
        assert rounds.seconds_remaining(auction, START + L + 100, 5) == L - 100
        assert rounds.seconds_remaining(auction, START + 4 * L, 5) is None

    def test_round_window(self, rounds, auction):
        assert rounds.round_window(auction, 2) == (START + L, START + 2 * L)


class TestEarlyFinish:
    """Tests for completion after round 1."""

    @pytest.mark.parametrize("bidders", [0, 1, 3])
    def test_few_bidders_complete_after_round_one(self, rounds, auction, bidders):
        assert rounds.status(auction, START + L - 1, bidders) == AuctionStatus.ROUND_1
        assert rounds.status(auction, START + L, bidders) == AuctionStatus.COMPLETED
        assert rounds.deciding_round(auction, bidders) == 1
        assert rounds.completed_at(auction, bidders) == START + L

    def test_four_bidders_continue(self, rounds, auction):
        assert rounds.status(auction, START + L, 4) == AuctionStatus.ROUND_2
        assert rounds.deciding_round(auction, 4) == 4
        assert rounds.completed_at(auction, 4) == START + 4 * L

    def test_single_round_auction_never_finishes_early(self, rounds):
        single = Auction("a2", "HA000002", "Vase", START, 100, 5, total_rounds=1)
        assert not rounds.finished_early(single, 0)
        assert rounds.deciding_round(single, 0) == 1


# =============================================================================
# Window Tests
# =============================================================================


class TestWindows:
    """Tests for entry and cancellation windows."""

    def test_entry_open_until_round_one_closes(self, rounds, auction):
        assert rounds.entry_open(auction, START - 500, 5)
        assert rounds.entry_open(auction, START + L - 1, 5)
        assert not rounds.entry_open(auction, START + L, 5)

    def test_cancellation_always_allowed_in_entry(self, rounds, auction):
        assert rounds.cancellation_permitted(auction, START - 3600, 0)

    def test_cancellation_window_boundary(self, rounds, auction):
        assert rounds.cancellation_permitted(auction, START + 720, 5)
        assert not rounds.cancellation_permitted(auction, START + 721, 5)

    def test_cancellation_refused_later(self, rounds, auction):
        assert not rounds.cancellation_permitted(auction, START + 13 * 60, 5)
        assert not rounds.cancellation_permitted(auction, START + 20 * 60, 5)

    def test_cancellation_refused_when_terminal(self, rounds, auction):
        assert not rounds.cancellation_permitted(auction, START + 4 * L, 5)
        auction.cancelled_at = START - 10
        assert not rounds.cancellation_permitted(auction, START - 5, 5)

    def test_stale_clock_shrinks_window(self, rounds, auction):
        assert rounds.cancellation_permitted(auction, START + 700, 5, clock_stale=False)
        assert not rounds.cancellation_permitted(auction, START + 700, 5, clock_stale=True)
        assert rounds.cancellation_permitted(auction, START + 600, 5, clock_stale=True)


# =============================================================================
# Qualification Tests
# =============================================================================


class TestQualification:
    """Tests for QualificationTracker."""

    def test_round_one_requires_entry(self, tracker):
        _, q = tracker
        assert q.is_qualified("a1", "alice", 1)
        assert not q.is_qualified("a1", "erin", 1)
        assert not q.is_qualified("a1", "nobody", 1)

    def test_later_rounds_require_every_earlier_bid(self, tracker):
        ledger, q = tracker
        for pid in ("alice", "bob", "carol", "dave"):
            ledger.submit("a1", pid, 1, 100, START + 10)
        assert ledger.submit("a1", "alice", 2, 150, START + L + 10).accepted
        assert q.is_qualified("a1", "alice", 2, START + L + 20)
        assert q.is_qualified("a1", "alice", 3, START + 2 * L + 20)

    def test_missed_round_is_permanent(self, tracker):
        ledger, q = tracker
        for pid in ("alice", "bob", "carol", "dave"):
            ledger.submit("a1", pid, 1, 100, START + 10)

        # bob skips round 2
        assert not q.is_qualified("a1", "bob", 3, START + 2 * L + 5)
        assert q.disqualified_from("a1", "bob") == 3

        ledger.submit("a1", "bob", 3, 300, START + 2 * L + 10)
        assert not q.is_qualified("a1", "bob", 3, START + 2 * L + 20)
        assert not q.is_qualified("a1", "bob", 4, START + 3 * L + 20)

    def test_open_round_miss_not_memoized(self, tracker):
        ledger, q = tracker
        ledger.submit("a1", "alice", 1, 100, START + 10)
        # Round 2 still open: alice could still bid
        assert not q.is_qualified("a1", "alice", 3, START + L + 30)
        assert q.disqualified_from("a1", "alice") is None
