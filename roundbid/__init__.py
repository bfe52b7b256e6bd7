"""
roundbid - Timed multi-round auctions with rank-ordered prize claims.

Core pieces:
- Time-derived round timeline with early completion
- Append-only bid ledger with progressive bidding
- Top-3 winner resolution among qualified bidders
- Claim escalation from rank 1 to rank 3
- Windowed admin cancellation with refunds
"""

__version__ = "0.1.0"
