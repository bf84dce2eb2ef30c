"""Projection of booking lists into calendar events and dashboard counters."""
from datetime import date
from typing import Iterable, Optional, Sequence

from schedule_portal.schemas import Booking, BookingStats, BookingStatus, CalendarEvent

ACTIVE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})


def _other_participant(booking: Booking, viewer_id: Optional[str]):
    if viewer_id is not None and booking.user is not None and booking.user.id == viewer_id:
        return booking.mentor
    return booking.user


def event_title(booking: Booking, viewer_id: Optional[str] = None) -> str:
    title = booking.type.replace("-", " ", 1)
    other = _other_participant(booking, viewer_id)
    if other is not None:
        title += f" - {other.username}"
    return title


def project_calendar(bookings: Iterable[Booking], viewer_id: Optional[str] = None) -> list[CalendarEvent]:
    """One event per booking: every booking field kept, plus a derived ``title``."""
    return [
        CalendarEvent.model_validate({**b.model_dump(), "title": event_title(b, viewer_id)})
        for b in bookings
    ]


def filter_active(bookings: Sequence[Booking], show_all: bool = False) -> Sequence[Booking]:
    if show_all:
        return bookings
    return [b for b in bookings if b.status in ACTIVE_STATUSES]


class CalendarProjection:
    """Caches the last projection until the booking list object is replaced."""

    def __init__(self):
        self._key = None
        self._source = None
        self._events: list[CalendarEvent] = []

    def __call__(self, bookings: Sequence[Booking], viewer_id: Optional[str] = None,
                 show_all: bool = False) -> list[CalendarEvent]:
        key = (id(bookings), viewer_id, show_all)
        if self._key != key:
            self._events = project_calendar(filter_active(bookings, show_all), viewer_id)
            self._key = key
            # keep the source alive so its id() cannot be reused
            self._source = bookings
        return self._events


def _booking_day(booking: Booking) -> Optional[date]:
    try:
        return date.fromisoformat(booking.date[:10])
    except ValueError:
        return None


def booking_stats(bookings: Sequence[Booking], today: Optional[date] = None) -> BookingStats:
    today = today or date.today()
    return BookingStats(
        confirmed_today=sum(
            1 for b in bookings
            if b.status == BookingStatus.CONFIRMED and _booking_day(b) == today
        ),
        pending=sum(1 for b in bookings if b.status == BookingStatus.PENDING),
        total=len(bookings),
    )
