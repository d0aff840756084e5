from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

from .errors import AuctionNotFound, ConflictError, LotNotFound, NotFoundError
from .models import SubItemRef
from .storage import Storage


logger = logging.getLogger(__name__)


def _placeholders(n: int) -> str:
    return ",".join("?" for _ in range(n))


def _dedupe(values: Iterable) -> list:
    return list(dict.fromkeys(values))


class AllocationRegistry:
    """Owns the two exclusivity rules of the catalog.

    A sub-item belongs to at most one lot and a lot to at most one auction.
    Membership sets are always replaced as a whole (delete then insert) inside
    a single transaction, so readers never see a partial set. The schema
    backs both rules with unique keys; the checks here exist to report every
    offending id at once instead of failing on the first.
    """

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    # Sub-item -> lot

    def assign_sub_items_to_lot(self, lot_id: str, refs: Sequence[SubItemRef]) -> None:
        refs = _dedupe(refs)
        with self.storage.transaction() as con:
            if con.execute("SELECT 1 FROM lots WHERE lot_id = ?", (lot_id,)).fetchone() is None:
                raise LotNotFound(lot_id)

            missing = [
                r
                for r in refs
                if con.execute(
                    "SELECT 1 FROM sub_items WHERE item_no = ? AND sr_no = ?", (r.item_no, r.sr_no)
                ).fetchone()
                is None
            ]
            if missing:
                raise NotFoundError(
                    "Sub-items not found: " + ", ".join(str(r) for r in missing),
                    missing,
                )

            conflicts = []
            for r in refs:
                holder = self.lot_of_sub_item(r)
                if holder is not None and holder != lot_id:
                    conflicts.append((r, holder))
            if conflicts:
                raise ConflictError(
                    "Sub-items already assigned to another lot: "
                    + ", ".join(f"{r} -> {holder}" for r, holder in conflicts),
                    conflicts,
                )

            con.execute("DELETE FROM lot_items WHERE lot_id = ?", (lot_id,))
            con.executemany(
                "INSERT INTO lot_items (lot_id, item_no, sr_no) VALUES (?, ?, ?)",
                [(lot_id, r.item_no, r.sr_no) for r in refs],
            )
        logger.info("Lot %s now holds %d sub-items", lot_id, len(refs))

    def lot_of_sub_item(self, ref: SubItemRef) -> Optional[str]:
        row = (
            self.storage.connection()
            .execute("SELECT lot_id FROM lot_items WHERE item_no = ? AND sr_no = ?", (ref.item_no, ref.sr_no))
            .fetchone()
        )
        return row["lot_id"] if row else None

    def sub_items_of_lot(self, lot_id: str) -> list[SubItemRef]:
        rows = (
            self.storage.connection()
            .execute("SELECT item_no, sr_no FROM lot_items WHERE lot_id = ? ORDER BY item_no, sr_no", (lot_id,))
            .fetchall()
        )
        return [SubItemRef(int(r["item_no"]), int(r["sr_no"])) for r in rows]

    # Lot -> auction

    def assign_lots_to_auction(self, auction_id: str, lot_ids: Sequence[str]) -> None:
        lot_ids = _dedupe(lot_ids)
        with self.storage.transaction() as con:
            if con.execute("SELECT 1 FROM auctions WHERE auction_id = ?", (auction_id,)).fetchone() is None:
                raise AuctionNotFound(auction_id)

            if lot_ids:
                found = {
                    r["lot_id"]
                    for r in con.execute(
                        f"SELECT lot_id FROM lots WHERE lot_id IN ({_placeholders(len(lot_ids))})", lot_ids
                    )
                }
                missing = [x for x in lot_ids if x not in found]
                if missing:
                    raise NotFoundError(
                        f"Some selected lots do not exist: {', '.join(missing)}. "
                        "Create those lots first, then assign them to the auction.",
                        missing,
                    )

                held = con.execute(
                    f"""
                    SELECT lot_id, auction_id FROM auction_lots
                    WHERE lot_id IN ({_placeholders(len(lot_ids))}) AND auction_id != ?
                    ORDER BY lot_id
                    """,
                    [*lot_ids, auction_id],
                ).fetchall()
                if held:
                    conflicts = [(r["lot_id"], r["auction_id"]) for r in held]
                    raise ConflictError(
                        "Lots already assigned to another auction: "
                        + ", ".join(f"{lot} -> {holder}" for lot, holder in conflicts),
                        conflicts,
                    )

            self._clear_auction(auction_id)
            for lot_id in lot_ids:
                con.execute("INSERT INTO auction_lots (auction_id, lot_id) VALUES (?, ?)", (auction_id, lot_id))
                con.execute("UPDATE lots SET assigned_auction = ? WHERE lot_id = ?", (auction_id, lot_id))
        logger.info("Auction %s now holds %d lots", auction_id, len(lot_ids))

    def assign_lot(self, auction_id: str, lot_id: str) -> None:
        """Add one lot to an auction, keeping its current lots."""
        with self.storage.transaction():
            current = self.lots_of_auction(auction_id)
            if lot_id not in current:
                self.assign_lots_to_auction(auction_id, [*current, lot_id])

    def unassign_auction(self, auction_id: str) -> None:
        with self.storage.transaction():
            self._clear_auction(auction_id)

    def unassign_lot(self, lot_id: str) -> None:
        with self.storage.transaction() as con:
            con.execute("DELETE FROM auction_lots WHERE lot_id = ?", (lot_id,))
            con.execute("UPDATE lots SET assigned_auction = NULL WHERE lot_id = ?", (lot_id,))

    def _clear_auction(self, auction_id: str) -> None:
        con = self.storage.connection()
        con.execute("DELETE FROM auction_lots WHERE auction_id = ?", (auction_id,))
        con.execute("UPDATE lots SET assigned_auction = NULL WHERE assigned_auction = ?", (auction_id,))

    def lots_of_auction(self, auction_id: str) -> list[str]:
        rows = (
            self.storage.connection()
            .execute("SELECT lot_id FROM auction_lots WHERE auction_id = ? ORDER BY lot_id", (auction_id,))
            .fetchall()
        )
        return [r["lot_id"] for r in rows]

    def auction_of_lot(self, lot_id: str) -> Optional[str]:
        row = (
            self.storage.connection()
            .execute("SELECT auction_id FROM auction_lots WHERE lot_id = ?", (lot_id,))
            .fetchone()
        )
        return row["auction_id"] if row else None

    def lot_in_auction(self, auction_id: str, lot_id: str) -> bool:
        return self.auction_of_lot(lot_id) == auction_id
