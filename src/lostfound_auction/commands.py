"""Typed request objects for every operation of the service boundary.

Each request is built once from a loosely-typed mapping (JSON body, CLI
arguments) with ``from_dict`` and validated there; the core only ever sees
these frozen dataclasses. Both ``camelCase`` and ``snake_case`` keys are
accepted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from dateutil import parser as dateparser

from .errors import InvalidInputError
from .models import AUCTION_STATUSES, LOT_TYPES, OVERRIDE_STATUSES, SubItem, SubItemRef
from .serde import SQLITE_INT_MAX, parse_dt


def _get_first(d: dict[str, Any], keys: Sequence[str]) -> Optional[Any]:
    for k in keys:
        if k in d and d[k] is not None:
            return d[k]
    return None


def _text(d: dict[str, Any], *keys: str, default: str = "") -> str:
    v = _get_first(d, keys)
    return str(v).strip() if v is not None else default


def _required(d: dict[str, Any], *keys: str) -> str:
    v = _text(d, *keys)
    if not v:
        raise InvalidInputError(f"{keys[0]} is required", field=keys[0])
    return v


def parse_int_strict(value: Any) -> Optional[int]:
    """Parse a whole number that fits an SQLite INTEGER.

    None for anything fractional, non-numeric or out of range.
    """
    n = None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        n = value
    elif isinstance(value, float):
        n = int(value) if value.is_integer() else None
    elif isinstance(value, str):
        s = value.strip()
        if s[:1] in "+-":
            digits = s[1:]
        else:
            digits = s
        if digits.isdigit():
            n = int(s)
    if n is None or not -SQLITE_INT_MAX - 1 <= n <= SQLITE_INT_MAX:
        return None
    return n


def _int_field(d: dict[str, Any], keys: Sequence[str], default: int) -> int:
    raw = _get_first(d, keys)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return default
    n = parse_int_strict(raw)
    if n is None:
        raise InvalidInputError(f"{keys[0]} must be an integer, got {raw!r}", field=keys[0])
    return n


def _choice(value: str, allowed: Iterable[str], name: str) -> str:
    allowed = tuple(allowed)
    if value not in allowed:
        raise InvalidInputError(f"{name} must be one of {', '.join(allowed)}, got {value!r}", field=name)
    return value


def _list(d: dict[str, Any], *keys: str) -> list[Any]:
    v = _get_first(d, keys)
    if v is None:
        return []
    if isinstance(v, (list, tuple)):
        return list(v)
    raise InvalidInputError(f"{keys[0]} must be a list", field=keys[0])


def _unique(values: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for v in values:
        if v:
            seen.setdefault(v, None)
    return tuple(seen)


def _wall_clock(text: str, name: str) -> str:
    """Validate auction date/time text: parseable and without a UTC offset."""
    if not text:
        return text
    try:
        parsed = dateparser.parse(text)
    except (ValueError, OverflowError):
        parsed = None
    if parsed is None:
        raise InvalidInputError(f"{name} is not a valid date or time: {text!r}", field=name)
    if parsed.tzinfo is not None:
        raise InvalidInputError(f"{name} must be local time without a UTC offset: {text!r}", field=name)
    return text


@dataclass(frozen=True)
class PlaceBidRequest:
    auction_id: str
    lot_id: str
    user_id: str
    # Normalized to int when integral; anything else is rejected by the
    # ledger at its amount check.
    amount: Any

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "PlaceBidRequest":
        raw = _get_first(d, ["amount"])
        n = parse_int_strict(raw)
        return PlaceBidRequest(
            auction_id=_required(d, "auctionId", "auction_id"),
            lot_id=_required(d, "lotId", "lot_id"),
            user_id=_required(d, "userId", "user_id"),
            amount=n if n is not None else raw,
        )


@dataclass(frozen=True)
class FinalizeAuctionRequest:
    auction_id: str

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "FinalizeAuctionRequest":
        return FinalizeAuctionRequest(auction_id=_required(d, "auctionId", "auction_id"))


@dataclass(frozen=True)
class AssignLotsRequest:
    auction_id: str
    lot_ids: tuple[str, ...] = ()

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "AssignLotsRequest":
        return AssignLotsRequest(
            auction_id=_required(d, "auctionId", "auction_id", "id"),
            lot_ids=_unique(str(x).strip() for x in _list(d, "lotIds", "lot_ids")),
        )


def parse_sub_item_ref(k: Any) -> Optional[SubItemRef]:
    if isinstance(k, SubItemRef):
        return k
    if isinstance(k, (list, tuple)) and len(k) == 2:
        item_no, sr_no = parse_int_strict(k[0]), parse_int_strict(k[1])
    elif isinstance(k, dict):
        row = k.get("row") if isinstance(k.get("row"), dict) else {}
        item_no = parse_int_strict(_get_first(k, ["itemNo", "item_no", "parentId"]))
        sr_no = parse_int_strict(_get_first(k, ["srNo", "sr_no"]) or row.get("srNo"))
    else:
        return None
    if item_no is None or sr_no is None:
        return None
    return SubItemRef(item_no, sr_no)


@dataclass(frozen=True)
class AssignSubItemsRequest:
    lot_id: str
    refs: tuple[SubItemRef, ...] = ()

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "AssignSubItemsRequest":
        lot_id = _required(d, "lotId", "lot_id", "id")
        keys = _list(d, "selectedSubItems", "subItems", "sub_items", "items")
        refs: dict[SubItemRef, None] = {}
        bad = []
        for k in keys:
            ref = parse_sub_item_ref(k)
            if ref is None:
                bad.append(k)
            else:
                refs.setdefault(ref, None)
        if bad:
            raise InvalidInputError(f"Invalid sub-item references: {bad!r}", field="selectedSubItems")
        return AssignSubItemsRequest(lot_id=lot_id, refs=tuple(refs))


@dataclass(frozen=True)
class HighestBidRequest:
    auction_id: str
    lot_id: str

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "HighestBidRequest":
        return HighestBidRequest(
            auction_id=_required(d, "auctionId", "auction_id"),
            lot_id=_required(d, "lotId", "lot_id"),
        )


@dataclass(frozen=True)
class MyBidsRequest:
    user_id: str

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "MyBidsRequest":
        return MyBidsRequest(user_id=_required(d, "userId", "user_id"))


@dataclass(frozen=True)
class MarkReadRequest:
    notification_id: int
    read: bool = True

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "MarkReadRequest":
        nid = parse_int_strict(_get_first(d, ["notificationId", "notification_id", "id"]))
        if nid is None:
            raise InvalidInputError("notificationId must be an integer", field="notificationId")

        read = _get_first(d, ["read", "isRead", "is_read"])
        if read is None:
            status = _text(d, "status")
            if status not in ("read", "unread"):
                raise InvalidInputError("status must be 'read' or 'unread'", field="status")
            read = status == "read"
        elif not isinstance(read, bool):
            raise InvalidInputError("read must be a boolean", field="read")
        return MarkReadRequest(notification_id=nid, read=read)


@dataclass(frozen=True)
class SaveAuctionRequest:
    auction_id: str
    name: str
    auction_type: str = "general"
    auction_date: str = ""
    start_time: str = ""
    end_time: str = ""
    default_bid_timer: int = 15
    status: str = "Draft"
    event_description: str = ""
    lot_ids: Optional[tuple[str, ...]] = None

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "SaveAuctionRequest":
        raw_lots = _get_first(d, ["lotIds", "lot_ids"])
        auction_date = _wall_clock(_text(d, "auctionDate", "auction_date"), "auctionDate")
        start_time = _wall_clock(_text(d, "startTime", "start_time"), "startTime")
        end_time = _wall_clock(_text(d, "endTime", "end_time"), "endTime")
        if auction_date:
            for name, t in (("startTime", start_time), ("endTime", end_time)):
                if t:
                    _wall_clock(f"{auction_date} {t}", name)
        return SaveAuctionRequest(
            auction_id=_required(d, "auctionId", "auction_id", "id"),
            name=_required(d, "auctionName", "auction_name", "name"),
            auction_type=_choice(_text(d, "auctionType", "auction_type") or "general", LOT_TYPES, "auctionType"),
            auction_date=auction_date,
            start_time=start_time,
            end_time=end_time,
            default_bid_timer=_int_field(d, ["defaultBidTimer", "default_bid_timer"], 15),
            status=_choice(_text(d, "status") or "Draft", AUCTION_STATUSES, "status"),
            event_description=_text(d, "eventDescription", "event_description"),
            lot_ids=None if raw_lots is None else _unique(str(x).strip() for x in _list(d, "lotIds", "lot_ids")),
        )


@dataclass(frozen=True)
class SaveLotRequest:
    lot_id: str
    name: str
    lot_type: str = "general"
    base_price: int = 0
    refs: tuple[SubItemRef, ...] = ()

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "SaveLotRequest":
        base_price = _int_field(d, ["basePrice", "base_price"], 0)
        if base_price < 0:
            raise InvalidInputError("basePrice must be >= 0", field="basePrice")
        refs = AssignSubItemsRequest.from_dict({**d, "lotId": _required(d, "lotId", "lot_id", "id")}).refs
        return SaveLotRequest(
            lot_id=_required(d, "lotId", "lot_id", "id"),
            name=_required(d, "lotName", "lot_name", "name"),
            lot_type=_choice(_text(d, "lotType", "lot_type") or "general", LOT_TYPES, "lotType"),
            base_price=base_price,
            refs=refs,
        )


@dataclass(frozen=True)
class SaveItemRequest:
    item_no: int
    rows: tuple[SubItem, ...] = field(default_factory=tuple)

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "SaveItemRequest":
        item_no = parse_int_strict(_get_first(d, ["itemNo", "item_no"]))
        if item_no is None:
            raise InvalidInputError("itemNo (integer) is required", field="itemNo")
        rows = _list(d, "rows", "items")
        if not rows:
            raise InvalidInputError("At least one sub-item row is required", field="rows")

        out: dict[int, SubItem] = {}
        for idx, r in enumerate(rows):
            if not isinstance(r, dict):
                raise InvalidInputError(f"Sub-item row {idx + 1} must be an object", field="rows")
            raw_sr = _get_first(r, ["srNo", "sr_no"])
            sr_no = idx + 1 if raw_sr is None else parse_int_strict(raw_sr)
            if sr_no is None:
                raise InvalidInputError(f"Sub-item row {idx + 1}: srNo must be an integer, got {raw_sr!r}", field="rows")
            out[sr_no] = SubItem(
                item_no=item_no,
                sr_no=sr_no,
                description=_text(r, "description"),
                qty=_int_field(r, ["qty"], 0),
                condition=_text(r, "condition"),
                make=_text(r, "make"),
                make_no=_text(r, "makeNo", "make_no"),
            )
        return SaveItemRequest(item_no=item_no, rows=tuple(out.values()))


@dataclass(frozen=True)
class SaveUserRequest:
    user_id: str
    name: str
    cnic: str
    paa: str = ""
    status: str = "Enabled"
    role: str = "Bidder"

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "SaveUserRequest":
        return SaveUserRequest(
            user_id=_required(d, "id", "userId", "user_id"),
            name=_required(d, "name"),
            cnic=_required(d, "cnic"),
            paa=_text(d, "paa"),
            status=_choice(_text(d, "status") or "Enabled", ("Enabled", "Disabled"), "status"),
            role=_text(d, "role") or "Bidder",
        )


@dataclass(frozen=True)
class SetAuctionStateRequest:
    auction_id: str
    status: str = "scheduled"
    active_lot_id: Optional[str] = None
    bid_ends_at: Optional[datetime] = None

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "SetAuctionStateRequest":
        raw_ends = _get_first(d, ["bidEndsAt", "bid_ends_at"])
        bid_ends_at = parse_dt(raw_ends)
        if raw_ends not in (None, "") and bid_ends_at is None:
            raise InvalidInputError(f"bidEndsAt is not a valid timestamp: {raw_ends!r}", field="bidEndsAt")
        return SetAuctionStateRequest(
            auction_id=_required(d, "auctionId", "auction_id"),
            status=_choice(_text(d, "status") or "scheduled", OVERRIDE_STATUSES, "status"),
            active_lot_id=_text(d, "activeLotId", "active_lot_id") or None,
            bid_ends_at=bid_ends_at,
        )
