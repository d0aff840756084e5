from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence


class AuctionError(Exception):
    """Base class for every recoverable error raised by the auction core."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "error": self.message}


class NotFoundError(AuctionError):
    kind = "not_found"

    def __init__(self, message: str, missing: Iterable[Any] = ()) -> None:
        super().__init__(message)
        self.missing = list(missing)

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        if self.missing:
            d["missing"] = [str(m) for m in self.missing]
        return d


class UserNotFound(NotFoundError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"User not found: {user_id}", [user_id])


class AuctionNotFound(NotFoundError):
    def __init__(self, auction_id: str) -> None:
        super().__init__(f"Auction not found: {auction_id}", [auction_id])


class LotNotFound(NotFoundError):
    def __init__(self, lot_id: str) -> None:
        super().__init__(f"Lot not found: {lot_id}", [lot_id])


class ItemNotFound(NotFoundError):
    def __init__(self, item_no: int) -> None:
        super().__init__(f"Item not found: {item_no}", [item_no])


class BidNotFound(NotFoundError):
    def __init__(self, bid_id: int) -> None:
        super().__init__(f"Bid not found: {bid_id}", [bid_id])


class NotificationNotFound(NotFoundError):
    def __init__(self, notification_id: int) -> None:
        super().__init__(f"Notification not found: {notification_id}", [notification_id])


class ConflictError(AuctionError):
    """An allocation is already held elsewhere.

    ``conflicts`` holds ``(claimed, holder)`` pairs, one per offending id, so a
    bulk assignment can be corrected in a single round trip.
    """

    kind = "conflict"

    def __init__(self, message: str, conflicts: Sequence[tuple[Any, str]]) -> None:
        super().__init__(message)
        self.conflicts = list(conflicts)

    @property
    def holders(self) -> set[str]:
        return {holder for _, holder in self.conflicts}

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["conflicts"] = [{"claimed": str(c), "held_by": h} for c, h in self.conflicts]
        return d


class InvalidInputError(AuctionError):
    kind = "invalid_input"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class InvalidAmount(InvalidInputError):
    def __init__(self, amount: Any) -> None:
        super().__init__(f"amount must be a positive integer, got {amount!r}", field="amount")
        self.amount = amount


class PreconditionFailedError(AuctionError):
    kind = "precondition_failed"


class AuctionNotLive(PreconditionFailedError):
    def __init__(self, auction_id: str, phase: str) -> None:
        super().__init__(f"Auction {auction_id} is not live (phase: {phase})")
        self.auction_id = auction_id
        self.phase = phase


class LotNotInAuction(PreconditionFailedError):
    def __init__(self, lot_id: str, auction_id: str) -> None:
        super().__init__(f"Lot {lot_id} is not assigned to auction {auction_id}")
        self.lot_id = lot_id
        self.auction_id = auction_id


class AuctionNotEnded(PreconditionFailedError):
    def __init__(self, auction_id: str, phase: str) -> None:
        super().__init__(f"Auction {auction_id} cannot be finalized before it ends (phase: {phase})")
        self.auction_id = auction_id
        self.phase = phase


class BidTooLowError(AuctionError):
    kind = "bid_too_low"

    def __init__(self, amount: int, minimum: int) -> None:
        super().__init__(f"Bid too low. Minimum allowed is {minimum}.")
        self.amount = amount
        self.minimum = minimum

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["minimum"] = self.minimum
        return d
