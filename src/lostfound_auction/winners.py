from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from .allocation import AllocationRegistry
from .errors import AuctionNotEnded, AuctionNotFound
from .lifecycle import phase
from .models import Phase, WinnerRecord
from .notifications import NotificationDispatcher, won_notice
from .serde import auction_from_row, dt_to_db, state_from_row, winner_from_row
from .storage import Storage


logger = logging.getLogger(__name__)


class WinnerResolver:
    """Turns bid history into one durable winner record per lot.

    Finalizing is re-runnable: each run recomputes every lot of the auction
    and overwrites the previous record. With ``requires_ended`` set, an auction
    must be in the ``ended`` phase before it can be finalized.
    """

    def __init__(
        self,
        storage: Storage,
        registry: AllocationRegistry,
        dispatcher: NotificationDispatcher,
        requires_ended: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.storage = storage
        self.registry = registry
        self.dispatcher = dispatcher
        self.requires_ended = requires_ended
        self.clock = clock

    def finalize_auction(self, auction_id: str) -> list[WinnerRecord]:
        winners: list[WinnerRecord] = []
        changed: list[WinnerRecord] = []
        with self.storage.transaction() as con:
            row = con.execute("SELECT * FROM auctions WHERE auction_id = ?", (auction_id,)).fetchone()
            if row is None:
                raise AuctionNotFound(auction_id)

            if self.requires_ended:
                state = state_from_row(
                    con.execute("SELECT * FROM auction_state WHERE auction_id = ?", (auction_id,)).fetchone()
                )
                current = phase(auction_from_row(row), state, self.clock())
                if current is not Phase.ENDED:
                    raise AuctionNotEnded(auction_id, current.value)

            decided_at = self.clock()
            for lot_id in self.registry.lots_of_auction(auction_id):
                # Earliest bid wins a tie: first to reach the price.
                top = con.execute(
                    """
                    SELECT user_id, amount FROM bids
                    WHERE auction_id = ? AND lot_id = ?
                    ORDER BY amount DESC, created_at ASC, bid_id ASC
                    LIMIT 1
                    """,
                    (auction_id, lot_id),
                ).fetchone()
                if top is None:
                    continue

                prior = self.winner_of(auction_id, lot_id)

                record = WinnerRecord(
                    auction_id=auction_id,
                    lot_id=lot_id,
                    user_id=top["user_id"],
                    winning_amount=int(top["amount"]),
                    decided_at=decided_at,
                )
                con.execute(
                    """
                    INSERT INTO lot_winners (auction_id, lot_id, user_id, winning_amount, decided_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT (auction_id, lot_id)
                    DO UPDATE SET user_id = excluded.user_id,
                                  winning_amount = excluded.winning_amount,
                                  decided_at = excluded.decided_at
                    """,
                    (auction_id, lot_id, record.user_id, record.winning_amount, dt_to_db(decided_at)),
                )
                winners.append(record)
                if prior is None or (prior.user_id, prior.winning_amount) != (record.user_id, record.winning_amount):
                    changed.append(record)

        logger.info("Auction %s finalized: %d winners", auction_id, len(winners))
        self.dispatcher.dispatch(won_notice(w.user_id, w.lot_id, w.winning_amount) for w in changed)
        return winners

    def winner_of(self, auction_id: str, lot_id: str) -> Optional[WinnerRecord]:
        row = (
            self.storage.connection()
            .execute("SELECT * FROM lot_winners WHERE auction_id = ? AND lot_id = ?", (auction_id, lot_id))
            .fetchone()
        )
        return winner_from_row(row) if row else None

    def wins_for_user(self, user_id: str) -> list[WinnerRecord]:
        rows = (
            self.storage.connection()
            .execute(
                "SELECT * FROM lot_winners WHERE user_id = ? ORDER BY decided_at DESC, auction_id, lot_id",
                (user_id,),
            )
            .fetchall()
        )
        return [winner_from_row(r) for r in rows]
