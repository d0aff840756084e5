from __future__ import annotations

from datetime import datetime
from typing import Optional

from dateutil import parser as dateparser

from .models import Auction, AuctionState, Phase


def parse_local(text: str) -> Optional[datetime]:
    """Parse free-form date/time text as a naive local datetime.

    Text carrying an offset (e.g. ``10:00Z``) is converted to local wall-clock
    time so it compares against the naive clock.
    """
    try:
        parsed = dateparser.parse(text)
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone().replace(tzinfo=None)
    except (ValueError, OverflowError, OSError):
        return None
    return parsed


def _combine(date_text: str, time_text: str) -> Optional[datetime]:
    d = (date_text or "").strip()
    t = (time_text or "").strip()
    if not d or not t:
        return None
    return parse_local(f"{d} {t}")


def auction_window(auction: Auction) -> tuple[Optional[datetime], Optional[datetime]]:
    """Return the (start, end) wall-clock window configured for an auction.

    Either bound is None when missing or unparsable.
    """
    return _combine(auction.auction_date, auction.start_time), _combine(auction.auction_date, auction.end_time)


def phase(auction: Auction, override: Optional[AuctionState], now: datetime) -> Phase:
    """Compute the lifecycle phase of an auction.

    Draft wins over everything; an operator override of ``live`` or ``ended``
    wins over the time window; otherwise the window decides.
    """
    if auction.status == "Draft":
        return Phase.DRAFT

    if override is not None and override.status in (Phase.LIVE.value, Phase.ENDED.value):
        return Phase(override.status)

    start, end = auction_window(auction)
    if start is None or now < start:
        return Phase.SCHEDULED
    if end is not None and now > end:
        return Phase.ENDED
    return Phase.LIVE


def is_live(auction: Auction, override: Optional[AuctionState], now: datetime) -> bool:
    return phase(auction, override, now) is Phase.LIVE
