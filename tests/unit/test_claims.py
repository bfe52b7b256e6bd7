"""
Unit tests for claim escalation.

Tests cover:
1. Initial ticket state at completion
2. Hand-off on expiry and on forfeit
3. Claim success and rejection reasons
4. Prize unclaimed after the last rank
5. Notification acknowledgement
"""

import pytest

from roundbid.core.auction import ClaimEscalator, ClaimStatus, WinnerEntry
from roundbid.core.collaborators import NotificationLog
from roundbid.core.errors import AuctionNotCompleted, RejectReason

T = 2_000_000.0
W = 900


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def winners():
    return [
        WinnerEntry(rank=1, participant_id="w1", amount=500, submitted_at=T - 100),
        WinnerEntry(rank=2, participant_id="w2", amount=400, submitted_at=T - 90),
        WinnerEntry(rank=3, participant_id="w3", amount=300, submitted_at=T - 80),
    ]


@pytest.fixture
def notifier():
    return NotificationLog()


@pytest.fixture
def escalator(winners, notifier):
    esc = ClaimEscalator(claim_window=W, notifier=notifier)
    esc.open("a1", winners, T)
    return esc


# =============================================================================
# Ticket Derivation
# =============================================================================


class TestTicket:
    """Tests for derived ticket state."""

    def test_initial_state(self, escalator):
        ticket = escalator.ticket("a1", T)
        assert ticket.current_rank == 1
        assert ticket.deadline == T + W
        assert ticket.status == ClaimStatus.WIN_ELIGIBLE
        assert [rc.status for rc in ticket.ranks] == [
            ClaimStatus.WIN_ELIGIBLE, ClaimStatus.WAITING, ClaimStatus.WAITING,
        ]
        assert [rc.scheduled_start for rc in ticket.ranks] == [T, T + W, T + 2 * W]

    def test_outsider_not_qualified(self, escalator):
        assert escalator.status_for("a1", "someone", T) == ClaimStatus.NOT_QUALIFIED

    def test_expiry_hands_off_to_next_rank(self, escalator):
        ticket = escalator.ticket("a1", T + W)
        assert ticket.current_rank == 2
        assert ticket.deadline == T + 2 * W
        rank_one = ticket.rank_claim(1)
        assert rank_one.status == ClaimStatus.EXPIRED
        assert rank_one.ended_at == T + W

    def test_late_reader_sees_same_deadline(self, escalator):
        """Next deadline counts from the actual expiry, not from the read."""
        ticket = escalator.ticket("a1", T + W + 250)
        assert ticket.current_rank == 2
        assert ticket.deadline == T + 2 * W

    def test_all_ranks_expire(self, escalator):
        ticket = escalator.ticket("a1", T + 3 * W)
        assert ticket.status == ClaimStatus.EXPIRED
        assert ticket.prize_unclaimed
        assert ticket.current_rank is None
        assert ticket.deadline is None
        assert all(rc.status == ClaimStatus.EXPIRED for rc in ticket.ranks)

    def test_single_winner(self):
        esc = ClaimEscalator(claim_window=W)
        esc.open("a2", [WinnerEntry(1, "solo", 50, T - 1)], T)
        assert esc.ticket("a2", T + W - 1).current_rank == 1
        assert esc.ticket("a2", T + W).prize_unclaimed

    def test_no_winners(self):
        esc = ClaimEscalator(claim_window=W)
        esc.open("a3", [], T)
        ticket = esc.ticket("a3", T)
        assert ticket.prize_unclaimed
        assert ticket.ranks == []

    def test_open_is_idempotent(self, escalator):
        escalator.open("a1", [WinnerEntry(1, "intruder", 1, T)], T + 500)
        ticket = escalator.ticket("a1", T)
        assert ticket.holder.participant_id == "w1"
        assert ticket.completed_at == T

    def test_unknown_auction(self, escalator):
        with pytest.raises(AuctionNotCompleted):
            escalator.ticket("missing", T)


# =============================================================================
# Holder Actions
# =============================================================================


class TestClaim:
    """Tests for record_claim."""

    def test_holder_claims(self, escalator):
        result = escalator.record_claim("a1", "w1", T + 100, payment_ref="pay-1")
        assert result.accepted
        assert result.rank == 1

        ticket = escalator.ticket("a1", T + 200)
        assert ticket.status == ClaimStatus.CLAIMED
        assert ticket.claimed_by == "w1"
        assert ticket.is_terminal
        assert not ticket.prize_unclaimed
        assert ticket.status_for("w2") == ClaimStatus.EXPIRED
        assert ticket.status_for("w3") == ClaimStatus.EXPIRED

    def test_claim_is_terminal_forever(self, escalator):
        escalator.record_claim("a1", "w1", T + 100)
        ticket = escalator.ticket("a1", T + 10 * W)
        assert ticket.status == ClaimStatus.CLAIMED

    def test_claim_at_deadline_rejected(self, escalator):
        result = escalator.record_claim("a1", "w1", T + W)
        assert result.reason == RejectReason.CLAIM_WINDOW_EXPIRED

    def test_non_holder_rejected(self, escalator):
        assert escalator.record_claim("a1", "w2", T + 10).reason == RejectReason.NOT_CURRENT_HOLDER
        assert escalator.record_claim("a1", "nobody", T + 10).reason == RejectReason.NOT_CURRENT_HOLDER

    def test_after_claim_already_resolved(self, escalator):
        escalator.record_claim("a1", "w1", T + 100)
        assert escalator.record_claim("a1", "w1", T + 150).reason == RejectReason.ALREADY_RESOLVED
        assert escalator.record_claim("a1", "w2", T + 150).reason == RejectReason.ALREADY_RESOLVED

    def test_second_rank_claims_after_expiry(self, escalator):
        result = escalator.record_claim("a1", "w2", T + W + 60)
        assert result.accepted
        assert result.rank == 2
        ticket = escalator.ticket("a1", T + W + 61)
        assert ticket.claimed_by == "w2"
        assert ticket.status_for("w1") == ClaimStatus.EXPIRED
        assert ticket.status_for("w3") == ClaimStatus.EXPIRED

    def test_last_rank_late_claim(self, escalator):
        result = escalator.record_claim("a1", "w3", T + 3 * W)
        assert result.reason == RejectReason.CLAIM_WINDOW_EXPIRED


class TestForfeit:
    """Tests for forfeit."""

    def test_forfeit_hands_off_immediately(self, escalator):
        assert escalator.forfeit("a1", "w1", T + 300).accepted
        ticket = escalator.ticket("a1", T + 300)
        assert ticket.current_rank == 2
        assert ticket.deadline == T + 300 + W
        assert ticket.rank_claim(1).ended_at == T + 300

    def test_double_forfeit(self, escalator):
        escalator.forfeit("a1", "w1", T + 300)
        assert escalator.forfeit("a1", "w1", T + 301).reason == RejectReason.ALREADY_RESOLVED

    def test_forfeit_by_waiting_rank(self, escalator):
        assert escalator.forfeit("a1", "w3", T + 10).reason == RejectReason.NOT_CURRENT_HOLDER

    def test_every_rank_forfeits(self, escalator):
        escalator.forfeit("a1", "w1", T + 10)
        escalator.forfeit("a1", "w2", T + 20)
        escalator.forfeit("a1", "w3", T + 30)
        ticket = escalator.ticket("a1", T + 31)
        assert ticket.prize_unclaimed
        assert len(escalator.events("a1")) == 3


# =============================================================================
# Notifications
# =============================================================================


class TestNotifications:

    def test_each_state_notified_once(self, escalator, notifier):
        escalator.ticket("a1", T)
        escalator.ticket("a1", T + 1)
        assert len(notifier.delivered) == 3

        escalator.ticket("a1", T + W)
        statuses = [(n.rank, n.status) for n in notifier.delivered]
        assert statuses[3:] == [(1, "EXPIRED"), (2, "WIN_ELIGIBLE")]

    def test_win_eligible_carries_deadline(self, escalator, notifier):
        escalator.ticket("a1", T + W)
        notes = notifier.for_participant("w2")
        assert [n.status for n in notes] == ["WIN_ELIGIBLE"]
        assert notes[0].deadline == T + 2 * W

    def test_claim_notifies_other_ranks(self, escalator, notifier):
        escalator.ticket("a1", T)
        escalator.record_claim("a1", "w1", T + 50)
        keys = {n.key for n in notifier.delivered}
        assert ("a1", 1, "CLAIMED") in keys
        assert ("a1", 2, "EXPIRED") in keys
        assert ("a1", 3, "EXPIRED") in keys
