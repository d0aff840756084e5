import csv
import json

import pytest

from lostfound_auction.commands import FinalizeAuctionRequest, PlaceBidRequest
from lostfound_auction.export import EXPORT_TABLES, export_ledger, lot_summary


def _bid(svc, user, amount, lot="L1"):
    svc.place_bid(PlaceBidRequest.from_dict({"auctionId": "A1", "lotId": lot, "userId": user, "amount": amount}))


def test_json_export_writes_every_table(world, tmp_path):
    _bid(world, "A", 10000)
    _bid(world, "B", 10100)
    world.finalize_auction(FinalizeAuctionRequest("A1"))

    written = export_ledger(world.storage, tmp_path / "out", fmt="json")
    assert set(written) == set(EXPORT_TABLES)

    bids = json.loads(written["bids"].read_text(encoding="utf-8"))
    assert [(b["user_id"], b["amount"]) for b in bids] == [("A", 10000), ("B", 10100)]
    winners = json.loads(written["winners"].read_text(encoding="utf-8"))
    assert winners[0]["user_id"] == "B"
    assert winners[0]["winning_amount"] == 10100


def test_csv_export(world, tmp_path):
    _bid(world, "A", 10000)
    written = export_ledger(world.storage, tmp_path, fmt="csv")
    with written["lot_items"].open(newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert rows == [{"lot_id": "L1", "item_no": "100", "sr_no": "1"}]
    # Empty tables still produce a file.
    assert written["winners"].read_text(encoding="utf-8") == ""


def test_unknown_format(world, tmp_path):
    with pytest.raises(ValueError):
        export_ledger(world.storage, tmp_path, fmt="xml")


def test_lot_summary(world):
    world.registry.assign_lot("A1", "L2")
    _bid(world, "A", 10000)
    _bid(world, "B", 10100)
    _bid(world, "A", 10200)

    df = lot_summary(world.storage, "A1")
    assert list(df["lot_id"]) == ["L1", "L2"]
    l1 = df.set_index("lot_id").loc["L1"]
    assert l1["bid_count"] == 3
    assert l1["bidders"] == 2
    assert l1["highest_amount"] == 10200
    l2 = df.set_index("lot_id").loc["L2"]
    assert l2["bid_count"] == 0


def test_lot_summary_without_bids(world):
    df = lot_summary(world.storage, "A1")
    assert list(df["lot_id"]) == ["L1"]
    assert list(df["bid_count"]) == [0]
