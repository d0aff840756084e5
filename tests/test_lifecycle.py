from datetime import datetime, timedelta, timezone

from lostfound_auction.lifecycle import auction_window, is_live, parse_local, phase
from lostfound_auction.models import Auction, AuctionState, Phase


def _auction(status="Scheduled", end="18:00"):
    return Auction(
        auction_id="A1",
        name="Test",
        auction_date="2026-10-17",
        start_time="10:00",
        end_time=end,
        status=status,
    )


def test_window_is_parsed_from_date_and_times():
    start, end = auction_window(_auction())
    assert start == datetime(2026, 10, 17, 10, 0)
    assert end == datetime(2026, 10, 17, 18, 0)


def test_phase_from_time_window():
    a = _auction()
    assert phase(a, None, datetime(2026, 10, 17, 9, 59)) is Phase.SCHEDULED
    assert phase(a, None, datetime(2026, 10, 17, 10, 0)) is Phase.LIVE
    assert phase(a, None, datetime(2026, 10, 17, 18, 0)) is Phase.LIVE
    assert phase(a, None, datetime(2026, 10, 17, 18, 1)) is Phase.ENDED


def test_no_end_time_stays_live_after_start():
    a = _auction(end="")
    assert phase(a, None, datetime(2027, 1, 1)) is Phase.LIVE


def test_draft_wins_over_override_and_window():
    a = _auction(status="Draft")
    live = AuctionState(auction_id="A1", status="live")
    assert phase(a, live, datetime(2026, 10, 17, 12, 0)) is Phase.DRAFT
    assert is_live(a, live, datetime(2026, 10, 17, 12, 0)) is False


def test_override_live_and_ended_win_over_window():
    a = _auction()
    before = datetime(2026, 10, 17, 8, 0)
    during = datetime(2026, 10, 17, 12, 0)
    assert phase(a, AuctionState(auction_id="A1", status="live"), before) is Phase.LIVE
    assert phase(a, AuctionState(auction_id="A1", status="ended"), during) is Phase.ENDED


def test_override_scheduled_falls_back_to_window():
    a = _auction()
    assert phase(a, AuctionState(auction_id="A1", status="scheduled"), datetime(2026, 10, 17, 12, 0)) is Phase.LIVE


def test_unparsable_start_is_scheduled():
    a = Auction(auction_id="A1", name="Test", auction_date="soon", start_time="later", status="Scheduled")
    assert phase(a, None, datetime(2026, 10, 17, 12, 0)) is Phase.SCHEDULED


def test_parse_local_converts_offsets_to_naive_local_time():
    parsed = parse_local("2026-10-17 10:00+00:00")
    assert parsed.tzinfo is None
    assert parsed == datetime(2026, 10, 17, 10, 0, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
    assert parse_local("2026-10-17 10:00") == datetime(2026, 10, 17, 10, 0)
    assert parse_local("nonsense") is None


def test_stored_offset_start_time_still_yields_a_phase():
    a = Auction(auction_id="A1", name="Test", auction_date="2026-10-17", start_time="10:00Z", status="Scheduled")
    start, end = auction_window(a)
    assert start.tzinfo is None
    assert end is None
    assert phase(a, None, start - timedelta(minutes=1)) is Phase.SCHEDULED
    assert phase(a, None, start + timedelta(minutes=1)) is Phase.LIVE
