import json

import pytest

from lostfound_auction.commands import MarkReadRequest, SaveAuctionRequest, SaveUserRequest
from lostfound_auction.errors import InvalidInputError, NotificationNotFound
from lostfound_auction.logging_utils import jsonl_append, jsonl_read
from lostfound_auction.models import PendingNotification
from lostfound_auction.notifications import new_auction_notice, outbid_notice


def test_scheduling_announces_to_enabled_users(world):
    notes = world.list_notifications("A")
    assert len(notes) == 1
    assert notes[0].type == "new_auction"
    assert notes[0].entity_type == "auction"
    assert notes[0].entity_id == "A1"
    assert notes[0].message == 'Auction "October clearance" is scheduled for 2026-10-17 10:00.'
    assert notes[0].is_read is False


def test_resaving_scheduled_auction_does_not_reannounce(world):
    world.save_auction(
        SaveAuctionRequest.from_dict(
            {"auctionId": "A1", "auctionName": "Renamed", "status": "Scheduled", "auctionDate": "2026-10-17"}
        )
    )
    assert [n.type for n in world.list_notifications("A")] == ["new_auction"]


def test_disabled_users_are_not_announced(world):
    world.save_user(SaveUserRequest.from_dict({"id": "C", "name": "Chen", "cnic": "33333", "status": "Disabled"}))
    world.save_auction(SaveAuctionRequest.from_dict({"auctionId": "A2", "auctionName": "Next", "status": "Scheduled"}))
    assert world.list_notifications("C") == []
    assert [n.entity_id for n in world.list_notifications("B")] == ["A2", "A1"]


def test_draft_auction_is_not_announced(world):
    world.save_auction(SaveAuctionRequest.from_dict({"auctionId": "A2", "auctionName": "Later"}))
    assert len(world.list_notifications("A")) == 1


def test_announcement_can_be_switched_off(world):
    from dataclasses import replace

    world.settings = replace(world.settings, notify_on_schedule=False)
    world.save_auction(SaveAuctionRequest.from_dict({"auctionId": "A2", "auctionName": "Quiet", "status": "Scheduled"}))
    assert len(world.list_notifications("A")) == 1


def test_mark_read_and_unread(world):
    note = world.list_notifications("A")[0]
    world.mark_notification_read(MarkReadRequest.from_dict({"notificationId": note.notification_id, "read": True}))
    assert world.list_notifications("A")[0].is_read is True
    world.mark_notification_read(MarkReadRequest.from_dict({"id": note.notification_id, "status": "unread"}))
    assert world.list_notifications("A")[0].is_read is False


def test_mark_read_unknown_id(world):
    with pytest.raises(NotificationNotFound):
        world.mark_notification_read(MarkReadRequest(notification_id=424242))


def test_notify_rejects_unknown_type(world):
    with pytest.raises(InvalidInputError):
        world.dispatcher.notify("A", "spam", "t", "m")


def test_notify_skips_blank_user(world):
    assert world.dispatcher.notify("  ", "system", "t", "m") is None


def test_list_is_newest_first_and_limited(world):
    for i in range(3):
        world.dispatcher.notify("A", "system", f"t{i}", f"m{i}")
    titles = [n.title for n in world.list_notifications("A")]
    assert titles[:3] == ["t2", "t1", "t0"]
    assert len(world.list_notifications("A", limit=2)) == 2


def test_dispatch_dead_letters_failures_and_continues(world, settings, monkeypatch):
    real_notify = world.dispatcher.notify

    def flaky(user_id, type, *args, **kwargs):
        if user_id == "B":
            raise RuntimeError("boom")
        return real_notify(user_id, type, *args, **kwargs)

    monkeypatch.setattr(world.dispatcher, "notify", flaky)
    delivered = world.dispatcher.dispatch([outbid_notice("B", "L1", "Laptops"), outbid_notice("A", "L1", "Laptops")])
    assert delivered == 1
    letters = jsonl_read(settings.dead_letter_path)
    assert len(letters) == 1
    assert letters[0]["notification"]["user_id"] == "B"


def test_replay_keeps_still_failing_letters(world, settings, monkeypatch):
    jsonl_append(settings.dead_letter_path, {"notification": PendingNotification("A", "system", "t", "m")})
    jsonl_append(settings.dead_letter_path, {"notification": {"user_id": "B", "type": "nonsense", "title": "", "message": ""}})
    jsonl_append(settings.dead_letter_path, {"notification": {"unexpected": True}})

    delivered, failing = world.replay_notifications()
    assert (delivered, failing) == (1, 1)
    remaining = jsonl_read(settings.dead_letter_path)
    assert [e["notification"]["type"] for e in remaining] == ["nonsense"]


def test_replay_without_dead_letters(world):
    assert world.replay_notifications() == (0, 0)


def test_jsonl_read_skips_malformed_lines(tmp_path):
    path = tmp_path / "letters.jsonl"
    path.write_text('{"a": 1}\nnot json\n\n[1, 2]\n' + json.dumps({"b": 2}) + "\n", encoding="utf-8")
    assert jsonl_read(path) == [{"a": 1}, {"b": 2}]


def test_new_auction_notice_without_schedule(world):
    auction = world.catalog.get_auction("A1")
    from dataclasses import replace

    note = new_auction_notice("A", replace(auction, auction_date="", start_time=""))
    assert note.message == 'Auction "October clearance" is scheduled.'
