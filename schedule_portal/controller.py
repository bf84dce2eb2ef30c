"""Trainer actions on bookings: accept, reject, complete, request revision."""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from schedule_portal.errors import BackendError, InvalidTransitionError, MeetingLinkError
from schedule_portal.feed import BookingFeed
from schedule_portal.meeting_links import (
    MIN_MEETING_LINK_LENGTH,
    generate_meeting_link,
    link_confirmable,
)
from schedule_portal.schemas import Booking, BookingStatus, BookingStatusResult, BookingStatusUpdate

logger = logging.getLogger("bookings")

BOOKING_TRANSITIONS = {
    BookingStatus.PENDING: {
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELLED,
        BookingStatus.REVISION_REQUESTED,
    },
    BookingStatus.REVISION_REQUESTED: {
        BookingStatus.PENDING,
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.CONFIRMED: {
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
        BookingStatus.REVISION_REQUESTED,
    },
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}


def assert_booking_transition(current: BookingStatus, target: BookingStatus) -> None:
    if target not in BOOKING_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(current.value, target.value)


class BookingStatusController:
    def __init__(self, client, feed: Optional[BookingFeed] = None,
                 link_factory: Callable[[], str] = generate_meeting_link):
        self.client = client
        self.feed = feed
        self.link_factory = link_factory

    def accept_booking(self, booking_id: str, link: Optional[str] = None) -> BookingStatusResult:
        if link is None:
            link = self.link_factory()
        elif not link_confirmable(link):
            raise MeetingLinkError(
                f"Meeting link must be at least {MIN_MEETING_LINK_LENGTH} characters"
            )
        return self._apply(booking_id, BookingStatus.CONFIRMED, link.strip())

    def reject_booking(self, booking_id: str) -> BookingStatusResult:
        return self._apply(booking_id, BookingStatus.CANCELLED)

    def complete_booking(self, booking_id: str) -> BookingStatusResult:
        return self._apply(booking_id, BookingStatus.COMPLETED)

    def request_revision(self, booking_id: str) -> BookingStatusResult:
        return self._apply(booking_id, BookingStatus.REVISION_REQUESTED)

    def _current(self, booking_id: str) -> Optional[Booking]:
        if self.feed is None:
            return None
        return self.feed.find(booking_id)

    def _apply(self, booking_id: str, status: BookingStatus,
               meeting_link: Optional[str] = None) -> BookingStatusResult:
        current = self._current(booking_id)
        if current is not None:
            assert_booking_transition(current.status, status)

        update = BookingStatusUpdate(id=booking_id, status=status, meeting_link=meeting_link)
        try:
            result = self.client.update_booking_status(update)
        except BackendError as e:
            logger.warning("Booking status update failed id=%s status=%s error=%s",
                           booking_id, status.value, e)
            raise

        logger.info("Booking updated id=%s status=%s", result.id, result.status.value)
        # keep the new status cached so the next action is still checked
        if self.feed is not None and not self.feed.record(result):
            self.feed.invalidate()
        return result


@dataclass
class ApprovalDraft:
    """State of the approve-session dialog before the trainer confirms."""

    booking_id: str
    meeting_link: str = ""

    @property
    def confirm_enabled(self) -> bool:
        return link_confirmable(self.meeting_link)

    def generate_link(self, link_factory: Callable[[], str] = generate_meeting_link) -> str:
        self.meeting_link = link_factory()
        return self.meeting_link

    def submit(self, controller: BookingStatusController) -> BookingStatusResult:
        if not self.confirm_enabled:
            raise MeetingLinkError("Provide a meeting link before confirming")
        result = controller.accept_booking(self.booking_id, self.meeting_link)
        self.meeting_link = ""
        return result
