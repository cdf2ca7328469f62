import asyncio

from jobboard.errors import CommandFailure, LoadFailure, ValidationFailure
from jobboard.services.notification_feed import NotificationFeed
from jobboard.utils.realtime_bridge import RealtimeBridge

from conftest import ME, FakeNotifications, make_notification, settle


def _seed(notifications: FakeNotifications, total: int = 5, unread: int = 2) -> None:
    notifications.items = [
        make_notification(f"n{i}", minute=i, read=i >= unread, link=f"/jobs/{i}")
        for i in range(total)
    ]


def _feed(notifications: FakeNotifications, bus) -> NotificationFeed:
    return NotificationFeed(ME, notifications, RealtimeBridge(bus))


def test_load_recent_counts_unread_and_orders_newest_first(notifications, bus) -> None:
    _seed(notifications)
    notifications.items.append(make_notification("someone-else", minute=99, user_id="other"))
    feed = _feed(notifications, bus)

    outcome = asyncio.run(feed.load_recent())

    assert outcome.ok
    assert [n.id for n in feed.items] == ["n4", "n3", "n2", "n1", "n0"]
    assert feed.unread_count == 2
    assert notifications.calls_to("list_recent") == [("list_recent", ME, 10)]


def test_load_is_bounded_to_feed_limit(notifications, bus) -> None:
    _seed(notifications, total=14, unread=0)
    feed = _feed(notifications, bus)

    asyncio.run(feed.load_recent())

    assert len(feed.items) == 10
    assert feed.items[0].id == "n13"


def test_load_failure_is_reported(notifications, bus) -> None:
    notifications.failing.add("list_recent")
    feed = _feed(notifications, bus)

    outcome = asyncio.run(feed.load_recent())

    assert isinstance(outcome.error, LoadFailure)
    assert feed.items == []
    assert feed.unread_count == 0


def test_realtime_notification_then_mark_read(notifications, bus) -> None:
    _seed(notifications)
    feed = _feed(notifications, bus)

    async def scenario():
        await feed.load_recent()
        await feed.watch()
        await notifications.push(make_notification("fresh", minute=50, link="/dashboard/messages"))
        await settle()
        counts = (len(feed.items), feed.unread_count, feed.items[0].id)
        outcome = await feed.mark_read("fresh")
        await feed.close()
        return counts, outcome

    counts, outcome = asyncio.run(scenario())
    assert counts == (6, 3, "fresh")
    assert outcome.ok
    assert feed.unread_count == 2
    assert feed.items[0].read is True


def test_mark_read_on_read_notification_is_a_no_op(notifications, bus) -> None:
    _seed(notifications)
    feed = _feed(notifications, bus)

    async def scenario():
        await feed.load_recent()
        return await feed.mark_read("n4")

    outcome = asyncio.run(scenario())
    assert outcome.ok
    assert notifications.calls_to("mark_read") == []
    assert feed.unread_count == 2


def test_mark_read_twice_decrements_once(notifications, bus) -> None:
    _seed(notifications)
    feed = _feed(notifications, bus)

    async def scenario():
        await feed.load_recent()
        first, second = await asyncio.gather(feed.mark_read("n0"), feed.mark_read("n0"))
        return first, second

    first, second = asyncio.run(scenario())
    assert first.ok and second.ok
    assert feed.unread_count == 1


def test_mark_read_failure_leaves_feed_unchanged(notifications, bus) -> None:
    _seed(notifications)
    feed = _feed(notifications, bus)

    async def scenario():
        await feed.load_recent()
        notifications.failing.add("mark_read")
        return await feed.mark_read("n1")

    outcome = asyncio.run(scenario())
    assert isinstance(outcome.error, CommandFailure)
    assert feed.unread_count == 2
    assert next(n for n in feed.items if n.id == "n1").read is False


def test_mark_read_unknown_notification(notifications, bus) -> None:
    feed = _feed(notifications, bus)

    outcome = asyncio.run(feed.mark_read("missing"))

    assert isinstance(outcome.error, ValidationFailure)
    assert notifications.calls_to("mark_read") == []


def test_activate_marks_read_and_yields_link(notifications, bus) -> None:
    _seed(notifications)
    feed = _feed(notifications, bus)

    async def scenario():
        await feed.load_recent()
        unread = await feed.activate("n1")
        already_read = await feed.activate("n3")
        return unread, already_read

    unread, already_read = asyncio.run(scenario())
    assert unread.value == "/jobs/1"
    assert already_read.value == "/jobs/3"
    assert notifications.calls_to("mark_read") == [("mark_read", "n1", ME)]
    assert feed.unread_count == 1


def test_activate_without_link_yields_none(notifications, bus) -> None:
    notifications.items = [make_notification("plain", minute=1)]
    feed = _feed(notifications, bus)

    async def scenario():
        await feed.load_recent()
        return await feed.activate("plain")

    outcome = asyncio.run(scenario())
    assert outcome.ok
    assert outcome.value is None
    assert feed.unread_count == 0


def test_activate_reports_mark_read_failure(notifications, bus) -> None:
    _seed(notifications)
    feed = _feed(notifications, bus)

    async def scenario():
        await feed.load_recent()
        notifications.failing.add("mark_read")
        return await feed.activate("n0")

    outcome = asyncio.run(scenario())
    assert outcome.kind == "command_failure"
    assert feed.unread_count == 2


def test_duplicate_and_foreign_events_are_ignored(notifications, bus) -> None:
    _seed(notifications)
    feed = _feed(notifications, bus)
    asyncio.run(feed.load_recent())

    fresh = make_notification("fresh", minute=60).model_dump(mode="json")
    assert feed.on_notification_event(fresh) is not None
    assert feed.on_notification_event(fresh) is None
    assert feed.on_notification_event(make_notification("x", minute=61, user_id="other").model_dump(mode="json")) is None
    assert feed.on_notification_event({"id": "broken"}) is None

    assert len(feed.items) == 6
    assert feed.unread_count == 3


def test_visible_truncates_to_limit(notifications, bus) -> None:
    _seed(notifications, total=10, unread=0)
    feed = _feed(notifications, bus)
    asyncio.run(feed.load_recent())

    for i in range(3):
        feed.on_notification_event(make_notification(f"live{i}", minute=100 + i).model_dump(mode="json"))

    assert len(feed.items) == 13
    assert len(feed.visible) == 10
    assert feed.visible[0].id == "live2"
    assert feed.unread_count == 3
