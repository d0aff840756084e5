"""Timed auctions of recovered lost-and-found items.

This package provides the bid-acceptance and allocation core: lot and
sub-item exclusivity, auction phases, a per-lot serialized bid ledger,
best-effort notifications and winner resolution over an SQLite store.
"""

from .models import Auction, AuctionState, Bid, BidAccepted, Lot, MyBid, Notification, Phase, SubItemRef, WinnerRecord
from .service import AuctionService
from .storage import Storage

__all__ = [
    "Auction",
    "AuctionService",
    "AuctionState",
    "Bid",
    "BidAccepted",
    "Lot",
    "MyBid",
    "Notification",
    "Phase",
    "Storage",
    "SubItemRef",
    "WinnerRecord",
]
