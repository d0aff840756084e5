from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence


class Phase(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    LIVE = "live"
    ENDED = "ended"


AUCTION_STATUSES = ("Draft", "Scheduled")
OVERRIDE_STATUSES = ("scheduled", "live", "ended")
LOT_TYPES = ("expensive", "general")
NOTIFICATION_TYPES = ("bid", "outbid", "won", "new_auction", "system")


@dataclass(frozen=True, order=True)
class SubItemRef:
    item_no: int
    sr_no: int

    def __str__(self) -> str:
        return f"({self.item_no}, {self.sr_no})"


@dataclass(frozen=True)
class SubItem:
    item_no: int
    sr_no: int
    description: str = ""
    qty: int = 0
    condition: str = ""
    make: str = ""
    make_no: str = ""


@dataclass(frozen=True)
class Item:
    item_no: int
    sub_items: Sequence[SubItem] = field(default_factory=tuple)


@dataclass(frozen=True)
class User:
    user_id: str
    name: str
    cnic: str
    paa: str = ""
    status: str = "Enabled"
    role: str = "Bidder"


@dataclass(frozen=True)
class Auction:
    auction_id: str
    name: str
    auction_type: str = "general"
    auction_date: str = ""
    start_time: str = ""
    end_time: str = ""
    default_bid_timer: int = 15
    event_description: str = ""
    status: str = "Draft"

    lot_ids: Sequence[str] = field(default_factory=tuple)


@dataclass(frozen=True)
class AuctionState:
    """Operator override for an auction's phase and live session."""

    auction_id: str
    status: str = "scheduled"
    active_lot_id: Optional[str] = None
    bid_ends_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Lot:
    lot_id: str
    name: str
    lot_type: str = "general"
    base_price: int = 0
    assigned_auction: Optional[str] = None

    sub_items: Sequence[SubItemRef] = field(default_factory=tuple)


@dataclass(frozen=True)
class Bid:
    bid_id: int
    auction_id: str
    lot_id: str
    user_id: str
    amount: int
    created_at: datetime


@dataclass(frozen=True)
class BidAccepted:
    bid_id: int
    created_at: datetime


@dataclass(frozen=True)
class MyBid:
    auction_id: str
    auction_name: str
    lot_id: str
    lot_name: str
    my_amount: int
    highest_amount: int
    created_at: datetime
    # True when the lot's current highest bid (same tie order as
    # BidLedger.highest_bid) is this user's.
    is_winning: bool = False

    @property
    def status(self) -> str:
        return "winning" if self.is_winning else "outbid"


@dataclass(frozen=True)
class WinnerRecord:
    auction_id: str
    lot_id: str
    user_id: str
    winning_amount: int
    decided_at: datetime


@dataclass(frozen=True)
class Notification:
    notification_id: int
    user_id: str
    type: str
    title: str
    message: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    is_read: bool = False
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class PendingNotification:
    """A notification not yet written to the store."""

    user_id: str
    type: str
    title: str
    message: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
