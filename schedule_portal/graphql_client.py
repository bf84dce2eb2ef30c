import logging

import httpx
import pybreaker

from schedule_portal.config import BACKEND_GRAPHQL_URL, BACKEND_TIMEOUT
from schedule_portal.errors import (
    BackendUnavailableError,
    BookingNotFoundError,
    GraphQLError,
    NotAuthorizedError,
)
from schedule_portal.schemas import (
    Booking,
    BookingCreate,
    BookingStatusResult,
    BookingStatusUpdate,
)

logger = logging.getLogger("bookings")

#  opens after 3 failures tries again after 30s
BACKEND_CB = pybreaker.CircuitBreaker(fail_max=3, reset_timeout=30)

BOOKING_FIELDS = """
      id
      type
      date
      time
      topic
      notes
      status
      meetingLink
      mentor {
        id
        username
      }
      user {
        id
        username
      }
      createdAt
"""

GET_MY_BOOKINGS = "query GetMyBookings {\n    myBookings {%s    }\n}" % BOOKING_FIELDS

GET_ALL_BOOKINGS = "query GetAllBookings {\n    bookings {%s    }\n}" % BOOKING_FIELDS

UPDATE_BOOKING_STATUS = """
mutation UpdateBookingStatus($id: ID!, $status: String!, $meetingLink: String) {
    updateBookingStatus(id: $id, status: $status, meetingLink: $meetingLink) {
      id
      status
      meetingLink
    }
}
"""

CREATE_BOOKING = """
mutation CreateBooking($mentorId: ID, $type: String!, $date: String!, $time: String!, $topic: String, $notes: String, $meetingLink: String) {
    createBooking(mentorId: $mentorId, type: $type, date: $date, time: $time, topic: $topic, notes: $notes, meetingLink: $meetingLink) {
      id
      status
      meetingLink
    }
}
"""


def _graphql_error(message: str) -> GraphQLError:
    lowered = message.lower()
    if "not found" in lowered:
        return BookingNotFoundError(message)
    if "not authorized" in lowered or "not authenticated" in lowered or "unauthorized" in lowered:
        return NotAuthorizedError(message)
    return GraphQLError(message)


class BookingsGraphQLClient:
    """Talks to the bookings GraphQL backend on behalf of one viewer."""

    def __init__(self, url: str = BACKEND_GRAPHQL_URL, token: str | None = None,
                 timeout: float = BACKEND_TIMEOUT, transport: httpx.BaseTransport | None = None):
        self.url = url
        self.token = token
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    @BACKEND_CB
    def _post(self, payload: dict) -> dict:
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            r = client.post(self.url, json=payload, headers=self._headers())

        r.raise_for_status()
        return r.json()

    def execute(self, query: str, variables: dict | None = None, operation_name: str | None = None) -> dict:
        payload = {"query": query, "variables": variables or {}}
        if operation_name:
            payload["operationName"] = operation_name

        try:
            body = self._post(payload)
        except pybreaker.CircuitBreakerError as e:
            logger.warning("Backend circuit breaker OPEN  failing fast op=%s", operation_name)
            raise BackendUnavailableError("Bookings backend temporarily unavailable") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Backend call failed op=%s error=%s", operation_name, type(e).__name__)
            raise BackendUnavailableError(f"Bookings backend request failed: {type(e).__name__}") from e

        errors = body.get("errors") or []
        if errors:
            message = errors[0].get("message") or "Unknown GraphQL error"
            logger.warning("Backend returned error op=%s message=%s", operation_name, message)
            raise _graphql_error(message)
        return body.get("data") or {}

    def my_bookings(self) -> list[Booking]:
        data = self.execute(GET_MY_BOOKINGS, operation_name="GetMyBookings")
        return [Booking.model_validate(b) for b in data.get("myBookings") or [] if b]

    def all_bookings(self) -> list[Booking]:
        data = self.execute(GET_ALL_BOOKINGS, operation_name="GetAllBookings")
        return [Booking.model_validate(b) for b in data.get("bookings") or [] if b]

    def update_booking_status(self, update: BookingStatusUpdate) -> BookingStatusResult:
        data = self.execute(UPDATE_BOOKING_STATUS, update.to_variables(), "UpdateBookingStatus")
        result = data.get("updateBookingStatus")
        if not result:
            raise BookingNotFoundError("Booking not found")
        return BookingStatusResult.model_validate(result)

    def create_booking(self, payload: BookingCreate) -> BookingStatusResult:
        data = self.execute(CREATE_BOOKING, payload.to_variables(), "CreateBooking")
        result = data.get("createBooking")
        if not result:
            raise GraphQLError("Booking was not created")
        return BookingStatusResult.model_validate(result)
