from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from .allocation import AllocationRegistry
from .commands import SaveAuctionRequest, SaveItemRequest, SaveLotRequest, SaveUserRequest, SetAuctionStateRequest
from .errors import AuctionNotFound, ItemNotFound, LotNotFound, LotNotInAuction, UserNotFound
from .models import Auction, AuctionState, Item, Lot, User
from .serde import (
    auction_from_row,
    dt_to_db,
    lot_from_row,
    state_from_row,
    sub_item_from_row,
    user_from_row,
)
from .storage import Storage


logger = logging.getLogger(__name__)


class Catalog:
    """Operator-side records: users, auctions, lots, items and override state.

    Membership changes are delegated to the allocation registry and run in the
    same transaction as the record they belong to.
    """

    def __init__(
        self,
        storage: Storage,
        registry: AllocationRegistry,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.storage = storage
        self.registry = registry
        self.clock = clock

    # Users

    def save_user(self, req: SaveUserRequest) -> User:
        with self.storage.transaction() as con:
            con.execute(
                """
                INSERT INTO users (user_id, name, cnic, paa, status, role)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (user_id)
                DO UPDATE SET name = excluded.name,
                              cnic = excluded.cnic,
                              paa = excluded.paa,
                              status = excluded.status,
                              role = excluded.role
                """,
                (req.user_id, req.name, req.cnic, req.paa, req.status, req.role),
            )
        return self.get_user(req.user_id)

    def get_user(self, user_id: str) -> User:
        row = self.storage.connection().execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()
        if row is None:
            raise UserNotFound(user_id)
        return user_from_row(row)

    def list_users(self) -> list[User]:
        rows = self.storage.connection().execute("SELECT * FROM users ORDER BY user_id").fetchall()
        return [user_from_row(r) for r in rows]

    # Auctions

    def save_auction(self, req: SaveAuctionRequest) -> tuple[Auction, bool]:
        """Create or update an auction.

        Returns the stored auction and whether this save moved it into
        ``Scheduled``. When ``req.lot_ids`` is given the auction's lot set is
        replaced in the same transaction.
        """
        with self.storage.transaction() as con:
            prior = con.execute("SELECT status FROM auctions WHERE auction_id = ?", (req.auction_id,)).fetchone()
            con.execute(
                """
                INSERT INTO auctions
                  (auction_id, auction_name, auction_type, auction_date, start_time, end_time,
                   default_bid_timer, status, event_description)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (auction_id)
                DO UPDATE SET auction_name = excluded.auction_name,
                              auction_type = excluded.auction_type,
                              auction_date = excluded.auction_date,
                              start_time = excluded.start_time,
                              end_time = excluded.end_time,
                              default_bid_timer = excluded.default_bid_timer,
                              status = excluded.status,
                              event_description = excluded.event_description
                """,
                (
                    req.auction_id,
                    req.name,
                    req.auction_type,
                    req.auction_date,
                    req.start_time,
                    req.end_time,
                    req.default_bid_timer,
                    req.status,
                    req.event_description,
                ),
            )
            if req.lot_ids is not None:
                self.registry.assign_lots_to_auction(req.auction_id, req.lot_ids)

        became_scheduled = req.status == "Scheduled" and (prior is None or prior["status"] != "Scheduled")
        logger.info("Auction %s saved (status=%s)", req.auction_id, req.status)
        return self.get_auction(req.auction_id), became_scheduled

    def get_auction(self, auction_id: str) -> Auction:
        row = self.storage.connection().execute(
            "SELECT * FROM auctions WHERE auction_id = ?", (auction_id,)
        ).fetchone()
        if row is None:
            raise AuctionNotFound(auction_id)
        return auction_from_row(row, self.registry.lots_of_auction(auction_id))

    def list_auctions(self) -> list[Auction]:
        rows = self.storage.connection().execute("SELECT * FROM auctions ORDER BY auction_id").fetchall()
        return [auction_from_row(r, self.registry.lots_of_auction(r["auction_id"])) for r in rows]

    def delete_auction(self, auction_id: str) -> None:
        with self.storage.transaction() as con:
            self.registry.unassign_auction(auction_id)
            cur = con.execute("DELETE FROM auctions WHERE auction_id = ?", (auction_id,))
            if cur.rowcount == 0:
                raise AuctionNotFound(auction_id)
        logger.info("Auction %s deleted", auction_id)

    def get_state(self, auction_id: str) -> Optional[AuctionState]:
        row = self.storage.connection().execute(
            "SELECT * FROM auction_state WHERE auction_id = ?", (auction_id,)
        ).fetchone()
        return state_from_row(row)

    def set_state(self, req: SetAuctionStateRequest) -> AuctionState:
        with self.storage.transaction() as con:
            if con.execute("SELECT 1 FROM auctions WHERE auction_id = ?", (req.auction_id,)).fetchone() is None:
                raise AuctionNotFound(req.auction_id)
            if req.active_lot_id and not self.registry.lot_in_auction(req.auction_id, req.active_lot_id):
                raise LotNotInAuction(req.active_lot_id, req.auction_id)
            con.execute(
                """
                INSERT INTO auction_state (auction_id, status, active_lot_id, bid_ends_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (auction_id)
                DO UPDATE SET status = excluded.status,
                              active_lot_id = excluded.active_lot_id,
                              bid_ends_at = excluded.bid_ends_at,
                              updated_at = excluded.updated_at
                """,
                (req.auction_id, req.status, req.active_lot_id, dt_to_db(req.bid_ends_at), dt_to_db(self.clock())),
            )
        logger.info("Auction %s override set to %s", req.auction_id, req.status)
        return self.get_state(req.auction_id)

    # Lots

    def save_lot(self, req: SaveLotRequest) -> Lot:
        with self.storage.transaction() as con:
            con.execute(
                """
                INSERT INTO lots (lot_id, lot_name, lot_type, base_price)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (lot_id)
                DO UPDATE SET lot_name = excluded.lot_name,
                              lot_type = excluded.lot_type,
                              base_price = excluded.base_price
                """,
                (req.lot_id, req.name, req.lot_type, req.base_price),
            )
            self.registry.assign_sub_items_to_lot(req.lot_id, req.refs)
        return self.get_lot(req.lot_id)

    def get_lot(self, lot_id: str) -> Lot:
        row = self.storage.connection().execute("SELECT * FROM lots WHERE lot_id = ?", (lot_id,)).fetchone()
        if row is None:
            raise LotNotFound(lot_id)
        return lot_from_row(row, self.registry.sub_items_of_lot(lot_id))

    def list_lots(self) -> list[Lot]:
        rows = self.storage.connection().execute("SELECT * FROM lots ORDER BY lot_id").fetchall()
        return [lot_from_row(r, self.registry.sub_items_of_lot(r["lot_id"])) for r in rows]

    def delete_lot(self, lot_id: str) -> None:
        with self.storage.transaction() as con:
            self.registry.unassign_lot(lot_id)
            cur = con.execute("DELETE FROM lots WHERE lot_id = ?", (lot_id,))
            if cur.rowcount == 0:
                raise LotNotFound(lot_id)
        logger.info("Lot %s deleted", lot_id)

    # Items

    def save_item(self, req: SaveItemRequest) -> Item:
        """Create or replace an item's sub-item rows.

        Rows kept by serial number stay in their lots; removed rows leave
        their lot with them.
        """
        with self.storage.transaction() as con:
            con.execute("INSERT INTO items (item_no) VALUES (?) ON CONFLICT (item_no) DO NOTHING", (req.item_no,))
            con.executemany(
                """
                INSERT INTO sub_items (item_no, sr_no, description, qty, condition, make, make_no)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (item_no, sr_no)
                DO UPDATE SET description = excluded.description,
                              qty = excluded.qty,
                              condition = excluded.condition,
                              make = excluded.make,
                              make_no = excluded.make_no
                """,
                [(s.item_no, s.sr_no, s.description, s.qty, s.condition, s.make, s.make_no) for s in req.rows],
            )
            keep = [s.sr_no for s in req.rows]
            con.execute(
                f"DELETE FROM sub_items WHERE item_no = ? AND sr_no NOT IN ({','.join('?' for _ in keep)})",
                [req.item_no, *keep],
            )
        return self.get_item(req.item_no)

    def get_item(self, item_no: int) -> Item:
        con = self.storage.connection()
        if con.execute("SELECT 1 FROM items WHERE item_no = ?", (item_no,)).fetchone() is None:
            raise ItemNotFound(item_no)
        rows = con.execute("SELECT * FROM sub_items WHERE item_no = ? ORDER BY sr_no", (item_no,)).fetchall()
        return Item(item_no=item_no, sub_items=tuple(sub_item_from_row(r) for r in rows))

    def list_items(self) -> list[Item]:
        rows = self.storage.connection().execute("SELECT item_no FROM items ORDER BY item_no").fetchall()
        return [self.get_item(int(r["item_no"])) for r in rows]

    def delete_item(self, item_no: int) -> None:
        with self.storage.transaction() as con:
            cur = con.execute("DELETE FROM items WHERE item_no = ?", (item_no,))
            if cur.rowcount == 0:
                raise ItemNotFound(item_no)
        logger.info("Item %d deleted", item_no)
