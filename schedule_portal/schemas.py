from enum import Enum
from typing import Annotated, Optional

from annotated_types import Ge
from pydantic import BaseModel, ConfigDict, StringConstraints
from pydantic.alias_generators import to_camel

# ---------- Reusable type aliases ----------
IdStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=64)]
TypeStr = Annotated[str, StringConstraints(min_length=1, max_length=100)]
LinkStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=5, max_length=2048)]
NonNegativeInt = Annotated[int, Ge(0)]


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    REVISION_REQUESTED = "revision_requested"
    COMPLETED = "completed"


class PortalMode(str, Enum):
    STUDENT = "student"
    TRAINER = "trainer"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


STAFF_MODES = frozenset({PortalMode.TRAINER, PortalMode.ADMIN, PortalMode.SUPER_ADMIN})
ADMIN_MODES = frozenset({PortalMode.ADMIN, PortalMode.SUPER_ADMIN})


class CamelModel(BaseModel):
    """Base for payloads exchanged with the GraphQL backend (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Participant(CamelModel):
    id: IdStr
    username: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    avatar: Optional[str] = None


class Booking(CamelModel):
    id: IdStr
    type: TypeStr
    date: str
    time: str
    topic: Optional[str] = None
    notes: Optional[str] = None
    status: BookingStatus = BookingStatus.PENDING
    meeting_link: Optional[str] = None
    user: Optional[Participant] = None
    mentor: Optional[Participant] = None
    created_at: Optional[str] = None


class CalendarEvent(Booking):
    title: str


class BookingStatusUpdate(CamelModel):
    id: IdStr
    status: BookingStatus
    meeting_link: Optional[str] = None

    def to_variables(self) -> dict:
        # an absent link is left out of the mutation entirely
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class BookingStatusResult(CamelModel):
    id: IdStr
    status: BookingStatus
    meeting_link: Optional[str] = None


class BookingCreate(CamelModel):
    type: TypeStr
    date: Annotated[str, StringConstraints(min_length=1)]
    time: Annotated[str, StringConstraints(min_length=1)]
    mentor_id: Optional[IdStr] = None
    topic: Optional[str] = None
    notes: Optional[str] = None
    meeting_link: Optional[LinkStr] = None

    def to_variables(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AcceptBookingRequest(CamelModel):
    meeting_link: Optional[str] = None


class BookingStats(CamelModel):
    confirmed_today: NonNegativeInt
    pending: NonNegativeInt
    total: NonNegativeInt


class PortalModeUpdate(BaseModel):
    mode: PortalMode


class PortalPreferenceRead(BaseModel):
    user_id: str
    mode: PortalMode

    model_config = ConfigDict(from_attributes=True)


class SubscriptionRead(BaseModel):
    channel: str
    events: list[str]
    active: bool


class Viewer(BaseModel):
    id: IdStr
    role: PortalMode = PortalMode.STUDENT
    token: Optional[str] = None
