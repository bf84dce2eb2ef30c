import threading

from schedule_portal.feed import BookingFeed, FeedRegistry
from schedule_portal.schemas import BookingStatus, BookingStatusResult


def test_bookings_fetched_lazily_once(fake_backend, make_booking):
    fake_backend.bookings = [make_booking()]
    feed = BookingFeed("t1", fake_backend.my_bookings)

    assert feed.find("b1") is None
    assert [b.id for b in feed.bookings()] == ["b1"]
    feed.bookings()
    assert fake_backend.fetches == 1


def test_invalidate_forces_refetch(fake_backend, make_booking):
    fake_backend.bookings = [make_booking()]
    feed = BookingFeed("t1", fake_backend.my_bookings)
    feed.bookings()

    fake_backend.bookings = [make_booking(id="b2")]
    feed.invalidate()
    assert [b.id for b in feed.bookings()] == ["b2"]
    assert fake_backend.fetches == 2


def test_later_fetch_wins_over_slower_earlier_one(make_booking):
    calls = []

    def fetcher():
        calls.append(len(calls))
        if len(calls) == 1:
            # a second refresh starts and finishes while the first is in flight
            feed.refresh()
            return [make_booking(id="old")]
        return [make_booking(id="new")]

    feed = BookingFeed("t1", fetcher)
    result = feed.refresh()

    assert [b.id for b in result] == ["new"]
    assert [b.id for b in feed.bookings()] == ["new"]


def test_registry_keeps_one_feed_per_user_and_swaps_fetcher(fake_backend):
    registry = FeedRegistry()
    first = registry.get("t1", lambda: [])
    second = registry.get("t1", fake_backend.my_bookings)

    assert first is second
    assert second.fetcher == fake_backend.my_bookings
    assert registry.get("s1", lambda: []) is not first


def held_fetcher(responses, hold_call):
    """Fetcher answering ``responses`` in order; call number ``hold_call`` blocks until released."""
    started = threading.Event()
    release = threading.Event()
    calls = []

    def fetcher():
        calls.append(1)
        result = responses[min(len(calls), len(responses)) - 1]
        if len(calls) == hold_call:
            started.set()
            release.wait(5)
        return result

    return fetcher, started, release


def test_invalidate_drops_fetch_started_before_it(make_booking):
    fetcher, started, release = held_fetcher([
        [make_booking(id="b1", status="pending")],
        [make_booking(id="b1", status="confirmed")],
    ], hold_call=1)
    feed = BookingFeed("t1", fetcher)
    worker = threading.Thread(target=feed.refresh)
    worker.start()
    assert started.wait(5)

    feed.invalidate()
    release.set()
    worker.join(5)

    assert feed.find("b1") is None
    assert feed.bookings()[0].status == BookingStatus.CONFIRMED


def test_record_drops_fetch_started_before_it(make_booking):
    fetcher, started, release = held_fetcher([
        [make_booking(id="b1", status="pending")],
        [make_booking(id="b1", status="pending")],
    ], hold_call=2)
    feed = BookingFeed("t1", fetcher)
    feed.bookings()

    worker = threading.Thread(target=feed.refresh)
    worker.start()
    assert started.wait(5)

    assert feed.record(BookingStatusResult(id="b1", status=BookingStatus.CONFIRMED))
    release.set()
    worker.join(5)

    assert feed.find("b1").status == BookingStatus.CONFIRMED


def test_record_updates_cached_booking(fake_backend, make_booking):
    fake_backend.bookings = [make_booking(id="b1"), make_booking(id="b2")]
    feed = BookingFeed("t1", fake_backend.my_bookings)
    before = feed.bookings()

    link = "https://meet.google.com/abc-defg-hij"
    assert feed.record(BookingStatusResult(id="b1", status=BookingStatus.CONFIRMED, meeting_link=link))

    after = feed.bookings()
    assert after is not before
    assert after[0].status == BookingStatus.CONFIRMED
    assert after[0].meeting_link == link
    assert after[0].user.username == "Jean"
    assert after[1] is before[1]
    assert fake_backend.fetches == 1


def test_record_unknown_booking(fake_backend, make_booking):
    fake_backend.bookings = [make_booking(id="b1")]
    feed = BookingFeed("t1", fake_backend.my_bookings)
    result = BookingStatusResult(id="b9", status=BookingStatus.CANCELLED)

    assert not feed.record(result)
    feed.bookings()
    assert not feed.record(result)
