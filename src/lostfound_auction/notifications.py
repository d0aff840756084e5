from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional

from .errors import InvalidInputError, NotificationNotFound
from .logging_utils import jsonl_append, jsonl_read
from .models import NOTIFICATION_TYPES, Auction, Notification, PendingNotification
from .retry import RetryPolicy, is_busy_error, retry_call
from .serde import dt_to_db, notification_from_row
from .storage import Storage


logger = logging.getLogger(__name__)


def outbid_notice(user_id: str, lot_id: str, lot_name: str) -> PendingNotification:
    return PendingNotification(
        user_id=user_id,
        type="outbid",
        title="You have been outbid",
        message=f'Your bid was outbid on lot "{lot_name}"',
        entity_type="lot",
        entity_id=lot_id,
    )


def bid_placed_notice(user_id: str, lot_id: str, lot_name: str, amount: int) -> PendingNotification:
    return PendingNotification(
        user_id=user_id,
        type="bid",
        title="Bid placed",
        message=f'You placed a bid of {amount} on lot "{lot_name}"',
        entity_type="lot",
        entity_id=lot_id,
    )


def won_notice(user_id: str, lot_id: str, amount: int) -> PendingNotification:
    return PendingNotification(
        user_id=user_id,
        type="won",
        title="You won a lot",
        message=f"Congratulations! You won lot {lot_id} with bid {amount}.",
        entity_type="lot",
        entity_id=lot_id,
    )


def new_auction_notice(user_id: str, auction: Auction) -> PendingNotification:
    when = " ".join(x for x in (auction.auction_date, auction.start_time) if x)
    return PendingNotification(
        user_id=user_id,
        type="new_auction",
        title="New auction scheduled",
        message=f'Auction "{auction.name}" is scheduled' + (f" for {when}." if when else "."),
        entity_type="auction",
        entity_id=auction.auction_id,
    )


class NotificationDispatcher:
    """Append-only notification store with best-effort delivery.

    ``notify`` raises like any other write. ``dispatch`` is the entry point
    for side effects of bids and finalization: every failure is logged and,
    when a dead-letter file is configured, kept there for ``replay``.
    """

    def __init__(
        self,
        storage: Storage,
        dead_letter_path: Optional[Path] = None,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.storage = storage
        self.dead_letter_path = dead_letter_path
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3)
        self.clock = clock

    def notify(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> Optional[int]:
        user_id = (user_id or "").strip()
        if not user_id:
            return None
        if type not in NOTIFICATION_TYPES:
            raise InvalidInputError(f"Unknown notification type: {type!r}", field="type")

        with self.storage.transaction() as con:
            cur = con.execute(
                """
                INSERT INTO notifications (user_id, type, title, message, entity_type, entity_id, is_read, created_at)
                VALUES (?, ?, ?, ?, ?, ?, 0, ?)
                """,
                (user_id, type, title.strip(), message.strip(), entity_type, entity_id, dt_to_db(self.clock())),
            )
            return int(cur.lastrowid)

    def _send(self, n: PendingNotification) -> Optional[int]:
        return self.notify(n.user_id, n.type, n.title, n.message, n.entity_type, n.entity_id)

    def dispatch(self, notifications: Iterable[PendingNotification]) -> int:
        delivered = 0
        for n in notifications:
            try:
                retry_call(lambda: self._send(n), self.retry_policy, should_retry=is_busy_error)
                delivered += 1
            except Exception as exc:  # noqa: BLE001
                logger.warning("Dropping %s notification for %s (%s)", n.type, n.user_id, exc)
                self._dead_letter(n, exc)
        return delivered

    def _dead_letter(self, n: PendingNotification, exc: Exception) -> None:
        if self.dead_letter_path is None:
            return
        try:
            jsonl_append(
                self.dead_letter_path,
                {"failed_at": self.clock(), "error": str(exc), "notification": n},
            )
        except OSError as exc2:
            logger.error("Could not write dead letter to %s (%s)", self.dead_letter_path, exc2)

    def replay_dead_letters(self) -> tuple[int, int]:
        """Re-dispatch dead-lettered notifications; returns (delivered, still_failing)."""
        if self.dead_letter_path is None or not self.dead_letter_path.exists():
            return 0, 0

        entries = jsonl_read(self.dead_letter_path)
        self.dead_letter_path.unlink()

        pending = []
        for e in entries:
            n = e.get("notification")
            if isinstance(n, dict):
                try:
                    pending.append(PendingNotification(**n))
                except TypeError:
                    logger.warning("Discarding unreadable dead letter: %r", n)
        delivered = self.dispatch(pending)
        logger.info("Replayed %d dead letters: %d delivered", len(pending), delivered)
        return delivered, len(pending) - delivered

    def mark_read(self, notification_id: int, read: bool = True) -> None:
        with self.storage.transaction() as con:
            cur = con.execute(
                "UPDATE notifications SET is_read = ? WHERE notification_id = ?",
                (1 if read else 0, notification_id),
            )
            if cur.rowcount == 0:
                raise NotificationNotFound(notification_id)

    def list_for_user(self, user_id: str, limit: int = 200) -> list[Notification]:
        rows = (
            self.storage.connection()
            .execute(
                """
                SELECT * FROM notifications
                WHERE user_id = ?
                ORDER BY created_at DESC, notification_id DESC
                LIMIT ?
                """,
                (user_id, limit),
            )
            .fetchall()
        )
        return [notification_from_row(r) for r in rows]

    def announce_auction(self, auction: Auction) -> int:
        rows = (
            self.storage.connection()
            .execute("SELECT user_id FROM users WHERE status = 'Enabled' ORDER BY user_id")
            .fetchall()
        )
        return self.dispatch(new_auction_notice(r["user_id"], auction) for r in rows)

