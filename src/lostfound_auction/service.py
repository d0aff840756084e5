from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from .allocation import AllocationRegistry
from .catalog import Catalog
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
from .config import Settings
from .errors import AuctionError, InvalidInputError
from .export import to_jsonable
from .ledger import BidLedger
from .lifecycle import phase
from .models import Auction, AuctionState, Bid, BidAccepted, Item, Lot, MyBid, Notification, Phase, User, WinnerRecord
from .notifications import NotificationDispatcher
from .storage import Storage
from .winners import WinnerResolver


logger = logging.getLogger(__name__)


class AuctionService:
    """Request/response boundary over the auction core.

    Every operation takes one typed request; ``handle`` builds that request
    from a loose mapping first, so wire layers only deal with dicts.
    """

    def __init__(
        self,
        storage: Storage,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.settings = settings or Settings()
        self.storage = storage
        self.clock = clock

        self.registry = AllocationRegistry(storage)
        self.dispatcher = NotificationDispatcher(storage, dead_letter_path=self.settings.dead_letter_path, clock=clock)
        self.catalog = Catalog(storage, self.registry, clock=clock)
        self.ledger = BidLedger(
            storage, self.registry, self.dispatcher, min_increment=self.settings.min_increment, clock=clock
        )
        self.resolver = WinnerResolver(
            storage,
            self.registry,
            self.dispatcher,
            requires_ended=self.settings.finalize_requires_ended,
            clock=clock,
        )

    @staticmethod
    def open(settings: Settings, clock: Callable[[], datetime] = datetime.now) -> "AuctionService":
        storage = Storage(settings.database, busy_timeout_sec=settings.busy_timeout_sec).open()
        return AuctionService(storage, settings, clock=clock)

    def close(self) -> None:
        self.storage.close()

    def __enter__(self) -> "AuctionService":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Core operations

    def place_bid(self, req: PlaceBidRequest) -> BidAccepted:
        return self.ledger.place_bid(req.auction_id, req.lot_id, req.user_id, req.amount)

    def finalize_auction(self, req: FinalizeAuctionRequest) -> list[WinnerRecord]:
        return self.resolver.finalize_auction(req.auction_id)

    def assign_lots_to_auction(self, req: AssignLotsRequest) -> None:
        self.registry.assign_lots_to_auction(req.auction_id, req.lot_ids)

    def assign_sub_items_to_lot(self, req: AssignSubItemsRequest) -> None:
        self.registry.assign_sub_items_to_lot(req.lot_id, req.refs)

    def get_highest_bid(self, req: HighestBidRequest) -> Optional[Bid]:
        return self.ledger.highest_bid(req.auction_id, req.lot_id)

    def get_my_bids(self, req: MyBidsRequest) -> list[MyBid]:
        return self.ledger.my_bids(req.user_id)

    def mark_notification_read(self, req: MarkReadRequest) -> None:
        self.dispatcher.mark_read(req.notification_id, req.read)

    # Operator and read-side operations

    def save_auction(self, req: SaveAuctionRequest) -> Auction:
        auction, became_scheduled = self.catalog.save_auction(req)
        if became_scheduled and self.settings.notify_on_schedule:
            sent = self.dispatcher.announce_auction(auction)
            logger.info("Auction %s announced to %d users", auction.auction_id, sent)
        return auction

    def delete_auction(self, auction_id: str) -> None:
        self.catalog.delete_auction(auction_id)

    def set_auction_state(self, req: SetAuctionStateRequest) -> AuctionState:
        return self.catalog.set_state(req)

    def auction_phase(self, auction_id: str, now: Optional[datetime] = None) -> Phase:
        auction = self.catalog.get_auction(auction_id)
        return phase(auction, self.catalog.get_state(auction_id), now or self.clock())

    def list_auctions(self, now: Optional[datetime] = None) -> list[tuple[Auction, Phase]]:
        now = now or self.clock()
        return [(a, phase(a, self.catalog.get_state(a.auction_id), now)) for a in self.catalog.list_auctions()]

    def save_lot(self, req: SaveLotRequest) -> Lot:
        return self.catalog.save_lot(req)

    def delete_lot(self, lot_id: str) -> None:
        self.catalog.delete_lot(lot_id)

    def save_item(self, req: SaveItemRequest) -> Item:
        return self.catalog.save_item(req)

    def delete_item(self, item_no: int) -> None:
        self.catalog.delete_item(item_no)

    def save_user(self, req: SaveUserRequest) -> User:
        return self.catalog.save_user(req)

    def list_users(self) -> list[User]:
        return self.catalog.list_users()

    def list_lots(self) -> list[Lot]:
        return self.catalog.list_lots()

    def list_items(self) -> list[Item]:
        return self.catalog.list_items()

    def list_notifications(self, user_id: str, limit: int = 200) -> list[Notification]:
        return self.dispatcher.list_for_user(user_id, limit=limit)

    def list_wins(self, user_id: str) -> list[WinnerRecord]:
        return self.resolver.wins_for_user(user_id)

    def bid_history(self, auction_id: str, lot_id: str, limit: int = 100) -> list[Bid]:
        return self.ledger.bid_history(auction_id, lot_id, limit=limit)

    def correct_bid_amount(self, bid_id: int, amount: Any) -> Bid:
        return self.ledger.correct_bid_amount(bid_id, amount)

    def replay_notifications(self) -> tuple[int, int]:
        return self.dispatcher.replay_dead_letters()

    # Loose-mapping entry point

    def handle(self, operation: str, body: dict[str, Any]) -> dict[str, Any]:
        """Run one operation from a loosely-typed body.

        Returns ``{"ok": True, "result": ...}`` or ``{"ok": False, "kind": ...,
        "error": ...}`` for any recoverable ``AuctionError``.
        """
        routes: dict[str, tuple[Any, Callable[[Any], Any]]] = {
            "placeBid": (PlaceBidRequest, self.place_bid),
            "finalizeAuction": (FinalizeAuctionRequest, self.finalize_auction),
            "assignLotsToAuction": (AssignLotsRequest, self.assign_lots_to_auction),
            "assignSubItemsToLot": (AssignSubItemsRequest, self.assign_sub_items_to_lot),
            "getHighestBid": (HighestBidRequest, self.get_highest_bid),
            "getMyBids": (MyBidsRequest, self.get_my_bids),
            "markNotificationRead": (MarkReadRequest, self.mark_notification_read),
        }
        try:
            if operation not in routes:
                raise InvalidInputError(f"Unknown operation: {operation}", field="operation")
            request_type, fn = routes[operation]
            result = fn(request_type.from_dict(body or {}))
        except AuctionError as exc:
            return {"ok": False, **exc.to_dict()}
        return {"ok": True, "result": _result(result)}


def _result(obj: Any) -> Any:
    if isinstance(obj, MyBid):
        return {**to_jsonable(obj), "status": obj.status}
    if isinstance(obj, list):
        return [_result(x) for x in obj]
    return to_jsonable(obj)

