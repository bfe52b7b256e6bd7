"""
Unit tests for the query models.
"""

import json

from roundbid.core.auction import AuctionStatus, ClaimEscalator, ClaimStatus, WinnerEntry
from roundbid.core.views import (
    AuctionStatusView,
    ClaimStatusView,
    LeaderboardEntryView,
    claim_banner_visible,
)

T = 5000.0


class TestBanner:

    def test_visible_for_configured_period(self):
        assert claim_banner_visible(T, T, 2700)
        assert claim_banner_visible(T, T + 2699, 2700)
        assert not claim_banner_visible(T, T + 2700, 2700)

    def test_hidden_before_completion(self):
        assert not claim_banner_visible(None, T, 2700)
        assert not claim_banner_visible(T, T - 1, 2700)


class TestViews:

    def test_claim_view_from_ticket(self):
        esc = ClaimEscalator(claim_window=900)
        esc.open("a1", [WinnerEntry(1, "w1", 300, T - 5), WinnerEntry(2, "w2", 200, T - 4)], T)
        view = ClaimStatusView.from_ticket(esc.ticket("a1", T + 900))

        assert view.current_rank == 2
        assert view.deadline == T + 1800
        assert [r.status for r in view.ranks] == [ClaimStatus.EXPIRED, ClaimStatus.WIN_ELIGIBLE]
        assert not view.prize_unclaimed

    def test_waiting_rank_exposes_scheduled_start(self):
        esc = ClaimEscalator(claim_window=900)
        esc.open("a1", [WinnerEntry(1, "w1", 300, T - 5), WinnerEntry(2, "w2", 200, T - 4)], T)
        view = ClaimStatusView.from_ticket(esc.ticket("a1", T + 10), clock_stale=True)

        waiting = view.ranks[1]
        assert waiting.status == ClaimStatus.WAITING
        assert waiting.window_start is None
        assert waiting.scheduled_start == T + 900
        assert view.model_dump()["clock_stale"] is True

    def test_status_view_json(self):
        view = AuctionStatusView(
            auction_id="a1",
            code="HA000001",
            name="Lamp",
            status=AuctionStatus.ROUND_2,
            current_round=2,
            start_time=T,
            prize_value=100,
            entry_fee=5,
            clock_stale=True,
        )
        data = json.loads(view.model_dump_json())
        assert data["status"] == "ROUND_2"
        assert data["clock_stale"] is True
        assert data["banner_visible"] is False

    def test_leaderboard_entry(self):
        entry = LeaderboardEntryView(rank=1, participant_id="p", amount=10, submitted_at=T, qualified=False)
        assert entry.model_dump()["qualified"] is False
