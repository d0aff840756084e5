from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any, Optional, Sequence

from .models import (
    Auction,
    AuctionState,
    Bid,
    Lot,
    Notification,
    SubItem,
    SubItemRef,
    User,
    WinnerRecord,
)


def parse_dt(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        try:
            return datetime.fromisoformat(s.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


# Largest value an SQLite INTEGER column can hold.
SQLITE_INT_MAX = 2**63 - 1


def dt_to_db(value: Optional[datetime]) -> Optional[str]:
    # Fixed-width ISO text so lexical order in SQL equals chronological order.
    if value is None:
        return None
    return value.isoformat(timespec="microseconds")


def user_from_row(r: sqlite3.Row) -> User:
    return User(
        user_id=r["user_id"],
        name=r["name"],
        cnic=r["cnic"],
        paa=r["paa"] or "",
        status=r["status"] or "Enabled",
        role=r["role"] or "Bidder",
    )


def auction_from_row(r: sqlite3.Row, lot_ids: Sequence[str] = ()) -> Auction:
    return Auction(
        auction_id=r["auction_id"],
        name=r["auction_name"],
        auction_type=r["auction_type"] or "general",
        auction_date=r["auction_date"] or "",
        start_time=r["start_time"] or "",
        end_time=r["end_time"] or "",
        default_bid_timer=int(r["default_bid_timer"] or 15),
        event_description=r["event_description"] or "",
        status=r["status"] or "Draft",
        lot_ids=tuple(lot_ids),
    )


def state_from_row(r: Optional[sqlite3.Row]) -> Optional[AuctionState]:
    if r is None:
        return None
    return AuctionState(
        auction_id=r["auction_id"],
        status=r["status"],
        active_lot_id=r["active_lot_id"],
        bid_ends_at=parse_dt(r["bid_ends_at"]),
        updated_at=parse_dt(r["updated_at"]),
    )


def lot_from_row(r: sqlite3.Row, refs: Sequence[SubItemRef] = ()) -> Lot:
    return Lot(
        lot_id=r["lot_id"],
        name=r["lot_name"],
        lot_type=r["lot_type"] or "general",
        base_price=int(r["base_price"] or 0),
        assigned_auction=r["assigned_auction"],
        sub_items=tuple(refs),
    )


def sub_item_from_row(r: sqlite3.Row) -> SubItem:
    return SubItem(
        item_no=int(r["item_no"]),
        sr_no=int(r["sr_no"]),
        description=r["description"] or "",
        qty=int(r["qty"] or 0),
        condition=r["condition"] or "",
        make=r["make"] or "",
        make_no=r["make_no"] or "",
    )


def bid_from_row(r: sqlite3.Row) -> Bid:
    return Bid(
        bid_id=int(r["bid_id"]),
        auction_id=r["auction_id"],
        lot_id=r["lot_id"],
        user_id=r["user_id"],
        amount=int(r["amount"]),
        created_at=parse_dt(r["created_at"]),
    )


def winner_from_row(r: sqlite3.Row) -> WinnerRecord:
    return WinnerRecord(
        auction_id=r["auction_id"],
        lot_id=r["lot_id"],
        user_id=r["user_id"],
        winning_amount=int(r["winning_amount"]),
        decided_at=parse_dt(r["decided_at"]),
    )


def notification_from_row(r: sqlite3.Row) -> Notification:
    return Notification(
        notification_id=int(r["notification_id"]),
        user_id=r["user_id"],
        type=r["type"],
        title=r["title"] or "",
        message=r["message"] or "",
        entity_type=r["entity_type"],
        entity_id=r["entity_id"],
        is_read=bool(r["is_read"]),
        created_at=parse_dt(r["created_at"]),
    )
