"""
Unit tests for the bid ledger.

Tests cover:
1. Validation order and rejection reasons
2. Progressive bidding across rounds
3. Immutability of accepted bids
4. Leaderboard ordering
5. Concurrent submissions
"""

import dataclasses
import threading

import pytest

from roundbid.core.auction import (
    Auction,
    BidLedger,
    Participant,
    RoundEngine,
)
from roundbid.core.errors import AuctionNotFound, DuplicateAuction, RejectReason
from roundbid.core.locks import KeyedLocks

START = 1_000_000.0
L = 900


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def ledger():
    """Ledger with one auction and four paid participants."""
    ledger = BidLedger(RoundEngine())
    ledger.register_auction(Auction("a1", "HA000001", "Lamp", START, 1000, 10))
    for pid in ("alice", "bob", "carol", "dave"):
        ledger.upsert_participant(Participant("a1", pid, pid.title(), paid_at=START - 100))
    return ledger


@pytest.fixture
def live_ledger(ledger):
    """All four participants bid in round 1, so the auction runs four rounds."""
    for i, pid in enumerate(("alice", "bob", "carol", "dave")):
        assert ledger.submit("a1", pid, 1, 100 + i, START + 10 + i).accepted
    return ledger


# =============================================================================
# Registration Tests
# =============================================================================


class TestRegistration:

    def test_duplicate_auction(self, ledger):
        with pytest.raises(DuplicateAuction):
            ledger.register_auction(Auction("a1", "HA000009", "Other", START, 10, 1))

    def test_unknown_auction(self, ledger):
        with pytest.raises(AuctionNotFound):
            ledger.get_auction("missing")

    def test_paid_participants_in_payment_order(self, ledger):
        ledger.upsert_participant(Participant("a1", "zed", "Zed", paid_at=START - 500))
        ledger.upsert_participant(Participant("a1", "pending", "Pending"))
        paid = [p.participant_id for p in ledger.paid_participants("a1")]
        assert paid[0] == "zed"
        assert "pending" not in paid


# =============================================================================
# Submission Tests
# =============================================================================


class TestSubmit:
    """Tests for BidLedger.submit."""

    def test_accepts_round_one_bid(self, ledger):
        result = ledger.submit("a1", "alice", 1, 100, START + 5)
        assert result.accepted
        assert result.bid.amount == 100
        assert ledger.bid_for("a1", "alice", 1) == result.bid

    def test_no_entry(self, ledger):
        ledger.upsert_participant(Participant("a1", "erin", "Erin"))
        assert ledger.submit("a1", "erin", 1, 100, START + 5).reason == RejectReason.NO_ENTRY
        assert ledger.submit("a1", "ghost", 1, 100, START + 5).reason == RejectReason.NO_ENTRY

    def test_no_entry_checked_before_round(self, ledger):
        result = ledger.submit("a1", "ghost", 3, 100, START + 5)
        assert result.reason == RejectReason.NO_ENTRY

    def test_wrong_round(self, ledger):
        assert ledger.submit("a1", "alice", 2, 100, START + 5).reason == RejectReason.WRONG_ROUND
        assert ledger.submit("a1", "alice", 1, 100, START - 5).reason == RejectReason.WRONG_ROUND

    def test_wrong_round_after_close(self, live_ledger):
        result = live_ledger.submit("a1", "alice", 1, 500, START + L)
        assert result.reason == RejectReason.WRONG_ROUND

    def test_duplicate_bid(self, ledger):
        assert ledger.submit("a1", "alice", 1, 100, START + 5).accepted
        result = ledger.submit("a1", "alice", 1, 200, START + 6)
        assert result.reason == RejectReason.DUPLICATE_BID
        assert ledger.bid_for("a1", "alice", 1).amount == 100

    def test_bid_must_increase(self, live_ledger):
        result = live_ledger.submit("a1", "alice", 2, 100, START + L + 5)
        assert result.reason == RejectReason.BID_NOT_PROGRESSIVE
        result = live_ledger.submit("a1", "alice", 2, 99, START + L + 5)
        assert result.reason == RejectReason.BID_NOT_PROGRESSIVE
        assert live_ledger.submit("a1", "alice", 2, 101, START + L + 5).accepted

    def test_missing_previous_bid_skips_progressive_check(self, live_ledger):
        # alice skips round 2 and bids low in round 3
        result = live_ledger.submit("a1", "alice", 3, 1, START + 2 * L + 5)
        assert result.accepted

    @pytest.mark.parametrize("round_number,amount", [
        (0, 100),
        (5, 100),
        (1, 0),
        (1, -5),
        (1, True),
        ("1", 100),
    ])
    def test_invalid_input(self, ledger, round_number, amount):
        result = ledger.submit("a1", "alice", round_number, amount, START + 5)
        assert result.reason == RejectReason.INVALID_INPUT
        assert not result

    def test_cancelled_auction(self, ledger):
        ledger.get_auction("a1").cancelled_at = START + 1
        result = ledger.submit("a1", "alice", 1, 100, START + 5)
        assert result.reason == RejectReason.AUCTION_CANCELLED

    def test_bids_are_immutable(self, ledger):
        bid = ledger.submit("a1", "alice", 1, 100, START + 5).bid
        with pytest.raises(dataclasses.FrozenInstanceError):
            bid.amount = 1

    def test_sequence_increases(self, live_ledger):
        seqs = [b.seq for b in live_ledger.bids_for_round("a1", 1)]
        assert seqs == sorted(seqs)
        assert len(set(seqs)) == 4


# =============================================================================
# Leaderboard Tests
# =============================================================================


class TestRanking:

    def test_highest_amount_first(self, live_ledger):
        ranked = live_ledger.ranked_bids("a1", 1)
        assert [(r, b.participant_id) for r, b in ranked] == [
            (1, "dave"), (2, "carol"), (3, "bob"), (4, "alice"),
        ]

    def test_earlier_submission_wins_tie(self, ledger):
        ledger.submit("a1", "bob", 1, 500, START + 20)
        ledger.submit("a1", "alice", 1, 500, START + 30)
        ledger.submit("a1", "carol", 1, 500, START + 10)
        ranked = [b.participant_id for _, b in ledger.ranked_bids("a1", 1)]
        assert ranked == ["carol", "bob", "alice"]

    def test_stats(self, live_ledger):
        assert live_ledger.stats() == {"auctions": 1, "participants": 4, "bids": 4}


# =============================================================================
# Concurrency Tests
# =============================================================================


class TestConcurrentSubmission:
    """Simultaneous writes for the same (auction, participant, round)."""

    def test_same_bid_from_many_threads(self, ledger):
        workers = 16
        barrier = threading.Barrier(workers)
        results = []

        def submit(amount):
            barrier.wait()
            results.append(ledger.submit("a1", "alice", 1, amount, START + 5))

        threads = [threading.Thread(target=submit, args=(100 + i,)) for i in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        accepted = [r for r in results if r.accepted]
        assert len(accepted) == 1
        assert [r.reason for r in results if not r.accepted] == [RejectReason.DUPLICATE_BID] * (workers - 1)
        assert ledger.bid_for("a1", "alice", 1) == accepted[0].bid
        assert ledger.bidder_count("a1", 1) == 1

    def test_bid_waits_for_auction_lock(self):
        locks = KeyedLocks()
        ledger = BidLedger(RoundEngine(), locks=locks)
        ledger.register_auction(Auction("a1", "HA000001", "Lamp", START, 1000, 10))
        ledger.upsert_participant(Participant("a1", "alice", "Alice", paid_at=START - 100))
        results = []

        # Holding the auction key, as a cancellation does, then cancelling
        with locks.hold("a1"):
            worker = threading.Thread(
                target=lambda: results.append(ledger.submit("a1", "alice", 1, 100, START + 5))
            )
            worker.start()
            worker.join(timeout=0.2)
            ledger.get_auction("a1").cancelled_at = START + 4
        worker.join()

        assert results[0].reason == RejectReason.AUCTION_CANCELLED
        assert ledger.bid_for("a1", "alice", 1) is None

    def test_release_bid_locks(self, live_ledger):
        locks = live_ledger._locks
        with locks.hold("a1"):
            pass
        assert live_ledger.release_bid_locks("a1") == 4
        assert len(locks) == 1
        assert live_ledger.release_bid_locks("a1") == 0
