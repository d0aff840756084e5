from __future__ import annotations

import csv
import json
import logging
from dataclasses import asdict, is_dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

import pandas as pd

from .storage import Storage


logger = logging.getLogger(__name__)


EXPORT_TABLES = {
    "auctions": "SELECT * FROM auctions ORDER BY auction_id",
    "lots": "SELECT * FROM lots ORDER BY lot_id",
    "lot_items": "SELECT * FROM lot_items ORDER BY lot_id, item_no, sr_no",
    "bids": "SELECT * FROM bids ORDER BY auction_id, lot_id, created_at, bid_id",
    "winners": "SELECT * FROM lot_winners ORDER BY auction_id, lot_id",
    "notifications": "SELECT * FROM notifications ORDER BY created_at, notification_id",
}

FORMATS = ("json", "csv", "parquet")


def to_jsonable(obj: Any) -> Any:
    if is_dataclass(obj):
        obj = asdict(obj)
    if isinstance(obj, dict):
        return {k: to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_jsonable(x) for x in obj]
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Path):
        return str(obj)
    return obj


def write_json(path: Path, rows: Iterable[object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    data = [to_jsonable(r) for r in rows]
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def write_csv(path: Path, rows: Iterable[object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    rows_list = [to_jsonable(r) for r in rows]
    if not rows_list:
        path.write_text("", encoding="utf-8")
        return
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=list(rows_list[0].keys()))
        writer.writeheader()
        for r in rows_list:
            writer.writerow(r)


def write_parquet(path: Path, rows: Iterable[object]) -> None:
    df = pd.DataFrame([to_jsonable(r) for r in rows])
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_parquet(path, index=False)


_WRITERS = {"json": write_json, "csv": write_csv, "parquet": write_parquet}


def export_ledger(storage: Storage, output_dir: Path, fmt: str = "json") -> dict[str, Path]:
    """Dump every ledger table to ``output_dir`` in one format."""
    if fmt not in _WRITERS:
        raise ValueError(f"Unknown export format: {fmt}")
    con = storage.connection()
    written = {}
    for name, query in EXPORT_TABLES.items():
        rows = [dict(r) for r in con.execute(query).fetchall()]
        path = output_dir / f"{name}.{fmt}"
        _WRITERS[fmt](path, rows)
        written[name] = path
        logger.info("Exported %d %s rows to %s", len(rows), name, path)
    return written


def lot_summary(storage: Storage, auction_id: str) -> pd.DataFrame:
    """Per-lot bid statistics for one auction, one row per assigned lot."""
    con = storage.connection()
    lots = pd.read_sql_query(
        """
        SELECT l.lot_id, l.lot_name, l.base_price
        FROM auction_lots al JOIN lots l ON l.lot_id = al.lot_id
        WHERE al.auction_id = ?
        ORDER BY l.lot_id
        """,
        con,
        params=(auction_id,),
    )
    bids = pd.read_sql_query(
        "SELECT lot_id, user_id, amount FROM bids WHERE auction_id = ?",
        con,
        params=(auction_id,),
    )
    if bids.empty:
        stats = pd.DataFrame(columns=["lot_id", "bid_count", "bidders", "highest_amount"])
    else:
        stats = (
            bids.groupby("lot_id")
            .agg(bid_count=("amount", "size"), bidders=("user_id", "nunique"), highest_amount=("amount", "max"))
            .reset_index()
        )
    out = lots.merge(stats, on="lot_id", how="left")
    out["bid_count"] = out["bid_count"].fillna(0).astype(int)
    out["bidders"] = out["bidders"].fillna(0).astype(int)
    return out
