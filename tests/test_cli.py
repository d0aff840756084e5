import json

import pytest

from lostfound_auction.cli import main


SEED = """
users:
  - {id: A, name: Alice, cnic: "11111"}
  - {id: B, name: Bilal, cnic: "22222"}
items:
  - itemNo: 100
    rows:
      - {srNo: 1, description: Laptop, qty: 1}
      - {srNo: 2, description: Tablet, qty: 1}
lots:
  - {lotId: L1, lotName: Laptops, basePrice: 10000, selectedSubItems: [[100, 1]]}
  - {lotId: L2, lotName: Tablets, basePrice: 500}
auctions:
  - {auctionId: A1, auctionName: Clearance, status: Scheduled, auctionDate: "2026-10-17", startTime: "10:00", lotIds: [L1]}
"""


@pytest.fixture
def run(tmp_path, capsys):
    db = str(tmp_path / "cli.sqlite")

    def _run(*argv):
        code = main(["--db", db, *argv])
        captured = capsys.readouterr()
        out = json.loads(captured.out) if code == 0 and captured.out.strip() else None
        return code, out, captured.err

    return _run


@pytest.fixture
def seeded(run, tmp_path):
    seed = tmp_path / "seed.yaml"
    seed.write_text(SEED, encoding="utf-8")
    code, out, _ = run("seed", "--file", str(seed))
    assert code == 0
    assert out == {"users": 2, "items": 1, "sub_items": 2, "lots": 2, "auctions": 1}
    code, _, _ = run("set-state", "--auction", "A1", "--status", "live")
    assert code == 0
    return run


def test_init_db(run, tmp_path):
    code, out, _ = run("init-db")
    assert code == 0
    assert out["database"] == str(tmp_path / "cli.sqlite")


def test_bid_flow(seeded):
    code, out, _ = seeded("place-bid", "--auction", "A1", "--lot", "L1", "--user", "A", "--amount", "10000")
    assert code == 0
    assert out["bid_id"] == 1

    code, out, err = seeded("place-bid", "--auction", "A1", "--lot", "L1", "--user", "B", "--amount", "10050")
    assert code == 2
    assert "Minimum allowed is 10100" in err

    seeded("place-bid", "--auction", "A1", "--lot", "L1", "--user", "B", "--amount", "10100")
    _, highest, _ = seeded("highest", "--auction", "A1", "--lot", "L1")
    assert (highest["user_id"], highest["amount"]) == ("B", 10100)

    _, mine, _ = seeded("my-bids", "--user", "A")
    assert mine[0]["status"] == "outbid"

    _, winners, _ = seeded("finalize", "--auction", "A1")
    assert [(w["lot_id"], w["user_id"], w["winning_amount"]) for w in winners] == [("L1", "B", 10100)]


def test_assign_commands(seeded):
    code, out, _ = seeded("assign-lots", "--auction", "A1", "--lot", "L1", "--lot", "L2")
    assert code == 0
    assert out["lotIds"] == ["L1", "L2"]

    code, _, err = seeded("assign-items", "--lot", "L2", "--item", "100:1")
    assert code == 2
    assert "L1" in err

    code, out, _ = seeded("assign-items", "--lot", "L2", "--item", "100:2")
    assert code == 0
    assert out["subItems"] == ["(100, 2)"]


def test_mark_read(seeded):
    code, _, _ = seeded("mark-read", "--id", "1")
    assert code == 0
    code, _, err = seeded("mark-read", "--id", "999", "--unread")
    assert code == 2
    assert "Notification not found" in err


def test_export_and_replay(seeded, tmp_path):
    code, out, _ = seeded("export", "--output-dir", str(tmp_path / "out"), "--format", "csv")
    assert code == 0
    assert set(out) >= {"bids", "winners"}

    code, out, _ = seeded("replay-notifications")
    assert out == {"delivered": 0, "still_failing": 0}


def test_config_file_is_read(tmp_path, capsys):
    cfg = tmp_path / "settings.yaml"
    cfg.write_text(f"database: {tmp_path / 'from_config.sqlite'}\nlog_level: WARNING\n", encoding="utf-8")
    assert main(["--config", str(cfg), "init-db"]) == 0
    assert json.loads(capsys.readouterr().out)["database"] == str(tmp_path / "from_config.sqlite")


def test_seed_reports_catalog_totals(seeded, tmp_path):
    extra = tmp_path / "extra.yaml"
    extra.write_text("users:\n  - {id: C, name: Chand, cnic: \"33333\"}\n", encoding="utf-8")
    code, out, _ = seeded("seed", "--file", str(extra))
    assert code == 0
    assert out == {"users": 3, "items": 1, "sub_items": 2, "lots": 2, "auctions": 1}
