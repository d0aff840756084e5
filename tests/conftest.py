import threading
from datetime import datetime, timedelta

import pytest

from lostfound_auction.commands import SaveAuctionRequest, SaveItemRequest, SaveLotRequest, SaveUserRequest
from lostfound_auction.config import Settings
from lostfound_auction.service import AuctionService
from lostfound_auction.storage import Storage


class TickingClock:
    """Deterministic clock advancing one millisecond per reading."""

    def __init__(self, start: datetime) -> None:
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            self.now = self.now + timedelta(milliseconds=1)
            return self.now

    def set(self, value: datetime) -> None:
        with self._lock:
            self.now = value


@pytest.fixture
def clock():
    return TickingClock(datetime(2026, 10, 17, 12, 0, 0))


@pytest.fixture
def settings(tmp_path):
    return Settings(database=tmp_path / "auction.sqlite", dead_letter_path=tmp_path / "dead_letters.jsonl")


@pytest.fixture
def svc(settings, clock):
    storage = Storage(settings.database).open()
    service = AuctionService(storage, settings, clock=clock)
    yield service
    service.close()


@pytest.fixture
def world(svc):
    """Users A and B, items 100/200, lots L1 (base 10000) and L2, live auction A1 holding L1."""
    svc.save_user(SaveUserRequest.from_dict({"id": "A", "name": "Alice", "cnic": "11111"}))
    svc.save_user(SaveUserRequest.from_dict({"id": "B", "name": "Bilal", "cnic": "22222"}))
    svc.save_item(
        SaveItemRequest.from_dict(
            {
                "itemNo": 100,
                "rows": [
                    {"srNo": 1, "description": "Laptop", "qty": 1, "condition": "Damaged", "make": "Dell"},
                    {"srNo": 2, "description": "Tablet", "qty": 1, "condition": "Good", "make": "Apple"},
                ],
            }
        )
    )
    svc.save_item(SaveItemRequest.from_dict({"itemNo": 200, "rows": [{"description": "Umbrella", "qty": 3}]}))
    svc.save_lot(
        SaveLotRequest.from_dict(
            {"lotId": "L1", "lotName": "Laptops", "basePrice": 10000, "selectedSubItems": [{"itemNo": 100, "srNo": 1}]}
        )
    )
    svc.save_lot(SaveLotRequest.from_dict({"lotId": "L2", "lotName": "Umbrellas", "basePrice": 0}))
    svc.save_auction(
        SaveAuctionRequest.from_dict(
            {
                "auctionId": "A1",
                "auctionName": "October clearance",
                "auctionDate": "2026-10-17",
                "startTime": "10:00",
                "endTime": "18:00",
                "status": "Scheduled",
                "lotIds": ["L1"],
            }
        )
    )
    return svc
