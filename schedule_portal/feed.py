import logging
import threading
from typing import Callable, Optional

from schedule_portal.calendar_view import CalendarProjection
from schedule_portal.schemas import Booking, BookingStatusResult

logger = logging.getLogger("bookings")

Fetcher = Callable[[], list[Booking]]


class BookingFeed:
    """Last fetched booking list of one user.

    Refreshes may overlap (realtime events and requests run on different
    threads). Each refresh is numbered when it starts and its result is only
    stored if no later-started refresh has stored one already, so the newest
    request wins regardless of completion order. Invalidating or recording a
    mutation result drops every fetch that started before it.
    """

    def __init__(self, user_id: str, fetcher: Fetcher):
        self.user_id = user_id
        self.fetcher = fetcher
        self.calendar = CalendarProjection()
        self._lock = threading.Lock()
        self._bookings: Optional[list[Booking]] = None
        self._issued = 0
        self._stored = 0

    def refresh(self) -> list[Booking]:
        with self._lock:
            self._issued += 1
            seq = self._issued

        bookings = self.fetcher()

        with self._lock:
            if seq > self._stored:
                self._bookings = bookings
                self._stored = seq
            else:
                logger.debug("Dropping stale booking fetch user=%s seq=%s", self.user_id, seq)
            return self._bookings if self._bookings is not None else bookings

    def bookings(self) -> list[Booking]:
        with self._lock:
            cached = self._bookings
        if cached is None:
            return self.refresh()
        return cached

    def invalidate(self) -> None:
        with self._lock:
            self._bookings = None
            # results of fetches already in flight predate the change
            self._stored = self._issued

    def record(self, result: BookingStatusResult) -> bool:
        """Write a mutation result into the cached booking.

        Returns False when the booking is not cached; the caller should
        invalidate instead.
        """
        update = {"status": result.status}
        if result.meeting_link is not None:
            update["meeting_link"] = result.meeting_link

        with self._lock:
            cached = self._bookings
            if cached is None or not any(b.id == result.id for b in cached):
                return False
            # a new list object, so calendar projections recompute
            self._bookings = [
                b.model_copy(update=update) if b.id == result.id else b for b in cached
            ]
            self._stored = self._issued
            return True

    def find(self, booking_id: str) -> Optional[Booking]:
        with self._lock:
            cached = self._bookings or []
        return next((b for b in cached if b.id == booking_id), None)


class FeedRegistry:
    def __init__(self):
        self._feeds: dict[str, BookingFeed] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str, fetcher: Fetcher) -> BookingFeed:
        # the fetcher carries the caller's token, so always take the newest one
        with self._lock:
            feed = self._feeds.get(user_id)
            if feed is None:
                feed = self._feeds[user_id] = BookingFeed(user_id, fetcher)
            else:
                feed.fetcher = fetcher
            return feed
