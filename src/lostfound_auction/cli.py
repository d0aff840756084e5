from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Any

from .commands import (
    AssignLotsRequest,
    AssignSubItemsRequest,
    FinalizeAuctionRequest,
    HighestBidRequest,
    MarkReadRequest,
    MyBidsRequest,
    PlaceBidRequest,
    SaveAuctionRequest,
    SaveItemRequest,
    SaveLotRequest,
    SaveUserRequest,
    SetAuctionStateRequest,
)
from .config import load_config, load_config_dict
from .errors import AuctionError
from .export import FORMATS, export_ledger, to_jsonable
from .logging_utils import setup_logging
from .service import AuctionService


logger = logging.getLogger(__name__)


def _print(obj: Any) -> None:
    print(json.dumps(to_jsonable(obj), ensure_ascii=False, indent=2))


def _cmd_init_db(svc: AuctionService, args: argparse.Namespace) -> None:
    _print({"database": svc.storage.db_path})


def _cmd_seed(svc: AuctionService, args: argparse.Namespace) -> None:
    data = load_config_dict(Path(args.file))
    for d in data.get("users", []):
        svc.save_user(SaveUserRequest.from_dict(d))
    for d in data.get("items", []):
        svc.save_item(SaveItemRequest.from_dict(d))
    for d in data.get("lots", []):
        svc.save_lot(SaveLotRequest.from_dict(d))
    for d in data.get("auctions", []):
        svc.save_auction(SaveAuctionRequest.from_dict(d))

    items = svc.list_items()
    totals = {
        "users": len(svc.list_users()),
        "items": len(items),
        "sub_items": sum(len(i.sub_items) for i in items),
        "lots": len(svc.list_lots()),
        "auctions": len(svc.list_auctions()),
    }
    logger.info("Seeded %s; catalog now holds %s", args.file, totals)
    _print(totals)


def _cmd_place_bid(svc: AuctionService, args: argparse.Namespace) -> None:
    req = PlaceBidRequest.from_dict(
        {"auctionId": args.auction, "lotId": args.lot, "userId": args.user, "amount": args.amount}
    )
    _print(svc.place_bid(req))


def _cmd_finalize(svc: AuctionService, args: argparse.Namespace) -> None:
    _print(svc.finalize_auction(FinalizeAuctionRequest.from_dict({"auctionId": args.auction})))


def _cmd_assign_lots(svc: AuctionService, args: argparse.Namespace) -> None:
    req = AssignLotsRequest.from_dict({"auctionId": args.auction, "lotIds": args.lot or []})
    svc.assign_lots_to_auction(req)
    _print({"ok": True, "auctionId": req.auction_id, "lotIds": req.lot_ids})


def _parse_pair(text: str) -> list[str]:
    parts = text.replace(",", ":").split(":")
    if len(parts) != 2:
        raise argparse.ArgumentTypeError(f"expected ITEM_NO:SR_NO, got {text!r}")
    return parts


def _cmd_assign_items(svc: AuctionService, args: argparse.Namespace) -> None:
    req = AssignSubItemsRequest.from_dict({"lotId": args.lot, "subItems": args.item or []})
    svc.assign_sub_items_to_lot(req)
    _print({"ok": True, "lotId": req.lot_id, "subItems": [str(r) for r in req.refs]})


def _cmd_highest(svc: AuctionService, args: argparse.Namespace) -> None:
    _print(svc.get_highest_bid(HighestBidRequest.from_dict({"auctionId": args.auction, "lotId": args.lot})))


def _cmd_my_bids(svc: AuctionService, args: argparse.Namespace) -> None:
    rows = svc.get_my_bids(MyBidsRequest.from_dict({"userId": args.user}))
    _print([{**dataclasses.asdict(b), "status": b.status} for b in rows])


def _cmd_mark_read(svc: AuctionService, args: argparse.Namespace) -> None:
    svc.mark_notification_read(MarkReadRequest.from_dict({"id": args.id, "read": not args.unread}))
    _print({"ok": True})


def _cmd_set_state(svc: AuctionService, args: argparse.Namespace) -> None:
    req = SetAuctionStateRequest.from_dict(
        {
            "auctionId": args.auction,
            "status": args.status,
            "activeLotId": args.active_lot,
            "bidEndsAt": args.bid_ends_at,
        }
    )
    _print(svc.set_auction_state(req))


def _cmd_replay(svc: AuctionService, args: argparse.Namespace) -> None:
    delivered, failing = svc.replay_notifications()
    _print({"delivered": delivered, "still_failing": failing})


def _cmd_export(svc: AuctionService, args: argparse.Namespace) -> None:
    written = export_ledger(svc.storage, Path(args.output_dir), fmt=args.format)
    _print({name: str(path) for name, path in written.items()})


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="lostfound-auction")
    p.add_argument("--config", type=str, default=None, help="YAML/JSON settings file")
    p.add_argument("--db", type=str, default=None, help="Database path (overrides config)")
    sub = p.add_subparsers(dest="cmd", required=True)

    init = sub.add_parser("init-db", help="Create the database schema")
    init.set_defaults(func=_cmd_init_db)

    seed = sub.add_parser("seed", help="Load users, items, lots and auctions from YAML/JSON")
    seed.add_argument("--file", type=str, required=True)
    seed.set_defaults(func=_cmd_seed)

    bid = sub.add_parser("place-bid", help="Place a bid on a lot")
    bid.add_argument("--auction", type=str, required=True)
    bid.add_argument("--lot", type=str, required=True)
    bid.add_argument("--user", type=str, required=True)
    bid.add_argument("--amount", type=str, required=True)
    bid.set_defaults(func=_cmd_place_bid)

    fin = sub.add_parser("finalize", help="Record the winner of every lot of an auction")
    fin.add_argument("--auction", type=str, required=True)
    fin.set_defaults(func=_cmd_finalize)

    al = sub.add_parser("assign-lots", help="Replace the lot set of an auction")
    al.add_argument("--auction", type=str, required=True)
    al.add_argument("--lot", action="append", help="Lot id (repeatable)")
    al.set_defaults(func=_cmd_assign_lots)

    ai = sub.add_parser("assign-items", help="Replace the sub-item set of a lot")
    ai.add_argument("--lot", type=str, required=True)
    ai.add_argument("--item", action="append", type=_parse_pair, help="ITEM_NO:SR_NO (repeatable)")
    ai.set_defaults(func=_cmd_assign_items)

    hi = sub.add_parser("highest", help="Show the current highest bid of a lot")
    hi.add_argument("--auction", type=str, required=True)
    hi.add_argument("--lot", type=str, required=True)
    hi.set_defaults(func=_cmd_highest)

    mb = sub.add_parser("my-bids", help="List a user's latest bid per lot")
    mb.add_argument("--user", type=str, required=True)
    mb.set_defaults(func=_cmd_my_bids)

    mr = sub.add_parser("mark-read", help="Mark a notification read (or unread)")
    mr.add_argument("--id", type=int, required=True)
    mr.add_argument("--unread", action="store_true", default=False)
    mr.set_defaults(func=_cmd_mark_read)

    st = sub.add_parser("set-state", help="Override an auction's phase")
    st.add_argument("--auction", type=str, required=True)
    st.add_argument("--status", choices=["scheduled", "live", "ended"], required=True)
    st.add_argument("--active-lot", type=str, default=None)
    st.add_argument("--bid-ends-at", type=str, default=None)
    st.set_defaults(func=_cmd_set_state)

    rp = sub.add_parser("replay-notifications", help="Retry dead-lettered notifications")
    rp.set_defaults(func=_cmd_replay)

    exp = sub.add_parser("export", help="Export ledger tables")
    exp.add_argument("--output-dir", type=str, required=True)
    exp.add_argument("--format", choices=FORMATS, default="json")
    exp.set_defaults(func=_cmd_export)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_config(Path(args.config) if args.config else None)
        if args.db:
            settings = dataclasses.replace(settings, database=Path(args.db))
        setup_logging(settings.log_level, settings.log_dir)

        with AuctionService.open(settings) as svc:
            args.func(svc, args)
    except AuctionError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
