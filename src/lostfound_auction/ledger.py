from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from .allocation import AllocationRegistry
from .errors import (
    AuctionError,
    AuctionNotFound,
    AuctionNotLive,
    BidNotFound,
    BidTooLowError,
    InvalidAmount,
    LotNotFound,
    LotNotInAuction,
    UserNotFound,
)
from .lifecycle import phase
from .locks import KeyedLocks
from .models import Bid, BidAccepted, MyBid, Phase
from .notifications import NotificationDispatcher, bid_placed_notice, outbid_notice
from .serde import SQLITE_INT_MAX, auction_from_row, bid_from_row, dt_to_db, parse_dt, state_from_row
from .storage import Storage


logger = logging.getLogger(__name__)


MIN_INCREMENT = 100


def _valid_amount(amount: Any) -> bool:
    return isinstance(amount, int) and not isinstance(amount, bool) and 0 < amount <= SQLITE_INT_MAX


def minimum_allowed(base_price: int, highest: Optional[Bid], min_increment: int = MIN_INCREMENT) -> int:
    highest_amount = highest.amount if highest is not None else 0
    return max(base_price, highest_amount + min_increment)


class BidLedger:
    """Append-only record of bids per (auction, lot).

    Acceptance is linearized per lot: an in-process lock keyed by
    ``(auction_id, lot_id)`` plus the database write lock taken before the
    current highest bid is read. Validation and insert therefore always see
    the last committed highest bid. Notifications are sent only after the
    bid is committed and can never undo it.
    """

    def __init__(
        self,
        storage: Storage,
        registry: AllocationRegistry,
        dispatcher: NotificationDispatcher,
        min_increment: int = MIN_INCREMENT,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.storage = storage
        self.registry = registry
        self.dispatcher = dispatcher
        self.min_increment = min_increment
        self.clock = clock
        self._locks = KeyedLocks()

    def place_bid(self, auction_id: str, lot_id: str, user_id: str, amount: Any) -> BidAccepted:
        try:
            with self._locks.hold((auction_id, lot_id)):
                accepted, previous, lot_name = self._accept(auction_id, lot_id, user_id, amount)
        except AuctionError as exc:
            logger.info("Bid rejected (%s) auction=%s lot=%s user=%s: %s", exc.kind, auction_id, lot_id, user_id, exc)
            raise

        logger.info(
            "Bid %d accepted auction=%s lot=%s user=%s amount=%d", accepted.bid_id, auction_id, lot_id, user_id, amount
        )

        notices = []
        if previous is not None and previous.user_id != user_id:
            notices.append(outbid_notice(previous.user_id, lot_id, lot_name))
        notices.append(bid_placed_notice(user_id, lot_id, lot_name, amount))
        self.dispatcher.dispatch(notices)
        return accepted

    def _accept(self, auction_id: str, lot_id: str, user_id: str, amount: Any) -> tuple[BidAccepted, Optional[Bid], str]:
        with self.storage.transaction() as con:
            if con.execute("SELECT 1 FROM users WHERE user_id = ?", (user_id,)).fetchone() is None:
                raise UserNotFound(user_id)

            auction_row = con.execute("SELECT * FROM auctions WHERE auction_id = ?", (auction_id,)).fetchone()
            if auction_row is None:
                raise AuctionNotFound(auction_id)
            state = state_from_row(
                con.execute("SELECT * FROM auction_state WHERE auction_id = ?", (auction_id,)).fetchone()
            )

            now = self.clock()
            current = phase(auction_from_row(auction_row), state, now)
            if current is not Phase.LIVE:
                raise AuctionNotLive(auction_id, current.value)

            if not self.registry.lot_in_auction(auction_id, lot_id):
                raise LotNotInAuction(lot_id, auction_id)

            lot_row = con.execute("SELECT lot_name, base_price FROM lots WHERE lot_id = ?", (lot_id,)).fetchone()
            if lot_row is None:
                raise LotNotFound(lot_id)

            if not _valid_amount(amount):
                raise InvalidAmount(amount)

            previous = self.highest_bid(auction_id, lot_id)
            minimum = minimum_allowed(int(lot_row["base_price"] or 0), previous, self.min_increment)
            if amount < minimum:
                raise BidTooLowError(amount, minimum)

            cur = con.execute(
                "INSERT INTO bids (auction_id, lot_id, user_id, amount, created_at) VALUES (?, ?, ?, ?, ?)",
                (auction_id, lot_id, user_id, amount, dt_to_db(now)),
            )
            accepted = BidAccepted(bid_id=int(cur.lastrowid), created_at=now)
        return accepted, previous, lot_row["lot_name"] or lot_id

    def highest_bid(self, auction_id: str, lot_id: str) -> Optional[Bid]:
        """Greatest amount; ties go to the most recent bid."""
        row = (
            self.storage.connection()
            .execute(
                """
                SELECT * FROM bids
                WHERE auction_id = ? AND lot_id = ?
                ORDER BY amount DESC, created_at DESC, bid_id DESC
                LIMIT 1
                """,
                (auction_id, lot_id),
            )
            .fetchone()
        )
        return bid_from_row(row) if row else None

    def my_bids(self, user_id: str) -> list[MyBid]:
        rows = (
            self.storage.connection()
            .execute(
                """
                WITH latest_user AS (
                  SELECT b.auction_id, b.lot_id, b.amount AS my_amount, b.created_at AS my_created_at,
                         ROW_NUMBER() OVER (
                           PARTITION BY b.auction_id, b.lot_id
                           ORDER BY b.created_at DESC, b.bid_id DESC
                         ) AS rn
                  FROM bids b
                  WHERE b.user_id = ?
                ),
                top AS (
                  SELECT auction_id, lot_id, amount AS highest_amount, user_id AS highest_user,
                         ROW_NUMBER() OVER (
                           PARTITION BY auction_id, lot_id
                           ORDER BY amount DESC, created_at DESC, bid_id DESC
                         ) AS rn
                  FROM bids
                )
                SELECT lu.auction_id, a.auction_name, lu.lot_id, l.lot_name,
                       lu.my_amount, h.highest_amount, h.highest_user = ? AS is_winning, lu.my_created_at
                FROM latest_user lu
                JOIN auctions a ON a.auction_id = lu.auction_id
                JOIN lots l ON l.lot_id = lu.lot_id
                JOIN top h ON h.auction_id = lu.auction_id AND h.lot_id = lu.lot_id AND h.rn = 1
                WHERE lu.rn = 1
                ORDER BY lu.my_created_at DESC
                """,
                (user_id, user_id),
            )
            .fetchall()
        )
        return [
            MyBid(
                auction_id=r["auction_id"],
                auction_name=r["auction_name"],
                lot_id=r["lot_id"],
                lot_name=r["lot_name"],
                my_amount=int(r["my_amount"]),
                highest_amount=int(r["highest_amount"]),
                created_at=parse_dt(r["my_created_at"]),
                is_winning=bool(r["is_winning"]),
            )
            for r in rows
        ]

    def bid_history(self, auction_id: str, lot_id: str, limit: int = 100) -> list[Bid]:
        rows = (
            self.storage.connection()
            .execute(
                """
                SELECT * FROM bids
                WHERE auction_id = ? AND lot_id = ?
                ORDER BY created_at DESC, bid_id DESC
                LIMIT ?
                """,
                (auction_id, lot_id, limit),
            )
            .fetchall()
        )
        return [bid_from_row(r) for r in rows]

    def correct_bid_amount(self, bid_id: int, amount: Any) -> Bid:
        """Admin-only historical fix; not part of the bidding protocol."""
        if not _valid_amount(amount):
            raise InvalidAmount(amount)
        with self.storage.transaction() as con:
            cur = con.execute("UPDATE bids SET amount = ? WHERE bid_id = ?", (amount, bid_id))
            if cur.rowcount == 0:
                raise BidNotFound(bid_id)
            row = con.execute("SELECT * FROM bids WHERE bid_id = ?", (bid_id,)).fetchone()
        logger.warning("Bid %d amount corrected to %d", bid_id, amount)
        return bid_from_row(row)
