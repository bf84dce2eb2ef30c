from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from schedule_portal.database import SessionLocal, engine
from schedule_portal.models import Base, PortalPreferenceDB

from fastapi import Depends, Header, HTTPException, Response, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from schedule_portal.calendar_view import booking_stats, filter_active
from schedule_portal.controller import ApprovalDraft, BookingStatusController
from schedule_portal.errors import (
    BackendError,
    BackendUnavailableError,
    BookingNotFoundError,
    InvalidTransitionError,
    MeetingLinkError,
    NotAuthorizedError,
)
from schedule_portal.feed import BookingFeed, FeedRegistry
from schedule_portal.graphql_client import BookingsGraphQLClient
from schedule_portal.realtime import (
    BOOKING_EVENTS,
    RealtimeNotifier,
    SubscriptionRegistry,
    channel_name,
    feed_refresher,
)
from schedule_portal.schemas import (
    ADMIN_MODES,
    STAFF_MODES,
    AcceptBookingRequest,
    Booking,
    BookingCreate,
    BookingStats,
    BookingStatusResult,
    CalendarEvent,
    PortalMode,
    PortalModeUpdate,
    PortalPreferenceRead,
    SubscriptionRead,
    Viewer,
)
import logging

logger = logging.getLogger("bookings")
logging.basicConfig(level=logging.INFO, force=True)

FEEDS = FeedRegistry()
SUBSCRIPTIONS = SubscriptionRegistry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield
    await SUBSCRIPTIONS.close_all()

app = FastAPI(title="Trainer Schedule Service", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], # dev-friendly; tighten in prod
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def commit_or_rollback(db: Session, error_msg: str):
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail=error_msg)

def http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, BookingNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, NotAuthorizedError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, MeetingLinkError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, BackendUnavailableError):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))

DOMAIN_ERRORS = (BackendError, InvalidTransitionError, MeetingLinkError)


# Viewer + per-request collaborators
def get_viewer(
    x_user_id: str = Header(..., min_length=1),
    x_user_role: PortalMode = Header(PortalMode.STUDENT),
    authorization: Optional[str] = Header(None),
) -> Viewer:
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip() or None
    return Viewer(id=x_user_id, role=x_user_role, token=token)

def require_staff(viewer: Viewer = Depends(get_viewer)) -> Viewer:
    if viewer.role not in STAFF_MODES:
        raise HTTPException(status_code=403, detail="You must be a trainer to manage bookings")
    return viewer

def require_admin(viewer: Viewer = Depends(get_viewer)) -> Viewer:
    if viewer.role not in ADMIN_MODES:
        raise HTTPException(status_code=403, detail="Admin access required")
    return viewer

def get_bookings_client(viewer: Viewer = Depends(get_viewer)) -> BookingsGraphQLClient:
    return BookingsGraphQLClient(token=viewer.token)

def get_feed(viewer: Viewer = Depends(get_viewer),
             client: BookingsGraphQLClient = Depends(get_bookings_client)) -> BookingFeed:
    return FEEDS.get(viewer.id, client.my_bookings)

def get_controller(client: BookingsGraphQLClient = Depends(get_bookings_client),
                   feed: BookingFeed = Depends(get_feed)) -> BookingStatusController:
    return BookingStatusController(client, feed)


@app.get("/health")
def health():
    return {"status": "ok"}

#Bookings
@app.get("/api/bookings", response_model=list[Booking], summary="My bookings")
def list_bookings(show_all: bool = False, feed: BookingFeed = Depends(get_feed)):
    try:
        bookings = feed.refresh()
    except DOMAIN_ERRORS as e:
        raise http_error(e) from e
    return filter_active(bookings, show_all)

@app.get("/api/bookings/calendar", response_model=list[CalendarEvent], summary="Calendar events")
def calendar_events(show_all: bool = False, viewer: Viewer = Depends(get_viewer),
                    feed: BookingFeed = Depends(get_feed)):
    try:
        bookings = feed.bookings()
    except DOMAIN_ERRORS as e:
        raise http_error(e) from e
    return feed.calendar(bookings, viewer.id, show_all)

@app.get("/api/bookings/stats", response_model=BookingStats, summary="Dashboard counters")
def bookings_stats(feed: BookingFeed = Depends(get_feed)):
    try:
        bookings = feed.bookings()
    except DOMAIN_ERRORS as e:
        raise http_error(e) from e
    return booking_stats(bookings)

@app.get("/api/admin/bookings", response_model=list[Booking], summary="All bookings")
def all_bookings(viewer: Viewer = Depends(require_admin),
                 client: BookingsGraphQLClient = Depends(get_bookings_client)):
    try:
        return client.all_bookings()
    except DOMAIN_ERRORS as e:
        raise http_error(e) from e

@app.post("/api/bookings", response_model=BookingStatusResult, status_code=201, summary="Create new booking")
def create_booking(payload: BookingCreate, viewer: Viewer = Depends(get_viewer),
                   client: BookingsGraphQLClient = Depends(get_bookings_client),
                   feed: BookingFeed = Depends(get_feed)):
    # trainer acts as mentor of the sessions they schedule
    if viewer.role in STAFF_MODES and payload.mentor_id is None:
        payload = payload.model_copy(update={"mentor_id": viewer.id})
    try:
        created = client.create_booking(payload)
    except DOMAIN_ERRORS as e:
        raise http_error(e) from e
    feed.invalidate()
    logger.info("Booking created id=%s status=%s", created.id, created.status.value)
    return created

@app.post("/api/bookings/{booking_id}/accept", response_model=BookingStatusResult, summary="Confirm a booking")
def accept_booking(booking_id: str, payload: Optional[AcceptBookingRequest] = None,
                   viewer: Viewer = Depends(require_staff),
                   controller: BookingStatusController = Depends(get_controller)):
    link = payload.meeting_link if payload else None
    try:
        if link is None:
            return controller.accept_booking(booking_id)
        return ApprovalDraft(booking_id, link).submit(controller)
    except DOMAIN_ERRORS as e:
        raise http_error(e) from e

@app.post("/api/bookings/{booking_id}/reject", response_model=BookingStatusResult, summary="Cancel a booking")
def reject_booking(booking_id: str, controller: BookingStatusController = Depends(get_controller)):
    try:
        return controller.reject_booking(booking_id)
    except DOMAIN_ERRORS as e:
        raise http_error(e) from e

@app.post("/api/bookings/{booking_id}/complete", response_model=BookingStatusResult, summary="Mark as completed")
def complete_booking(booking_id: str, viewer: Viewer = Depends(require_staff),
                     controller: BookingStatusController = Depends(get_controller)):
    try:
        return controller.complete_booking(booking_id)
    except DOMAIN_ERRORS as e:
        raise http_error(e) from e

@app.post("/api/bookings/{booking_id}/revision", response_model=BookingStatusResult, summary="Request revision")
def request_revision(booking_id: str, viewer: Viewer = Depends(require_staff),
                     controller: BookingStatusController = Depends(get_controller)):
    try:
        return controller.request_revision(booking_id)
    except DOMAIN_ERRORS as e:
        raise http_error(e) from e

#Portal mode
@app.get("/api/portal-mode", response_model=PortalPreferenceRead, summary="Last viewed portal mode")
def get_portal_mode(viewer: Viewer = Depends(get_viewer), db: Session = Depends(get_db)):
    pref = db.get(PortalPreferenceDB, viewer.id)
    if not pref:
        return PortalPreferenceRead(user_id=viewer.id, mode=viewer.role)
    return pref

@app.put("/api/portal-mode", response_model=PortalPreferenceRead, summary="Remember portal mode")
def set_portal_mode(payload: PortalModeUpdate, viewer: Viewer = Depends(get_viewer),
                    db: Session = Depends(get_db)):
    pref = db.get(PortalPreferenceDB, viewer.id)
    if pref:
        pref.mode = payload.mode.value
    else:
        pref = PortalPreferenceDB(user_id=viewer.id, mode=payload.mode.value)
        db.add(pref)

    commit_or_rollback(db, "portal mode update failed")
    db.refresh(pref)
    return pref

#Realtime
@app.post("/api/realtime/subscription", response_model=SubscriptionRead, status_code=201,
          summary="Subscribe to booking events")
async def subscribe_bookings(viewer: Viewer = Depends(get_viewer),
                             feed: BookingFeed = Depends(get_feed)):
    notifier = RealtimeNotifier(viewer.id, feed_refresher(feed))
    try:
        notifier = await SUBSCRIPTIONS.subscribe(notifier)
    except Exception as e:
        logger.warning("Realtime subscribe failed channel=%s error=%s",
                       notifier.channel, type(e).__name__)
        raise HTTPException(status_code=503, detail="Realtime channel unavailable") from e
    return SubscriptionRead(channel=notifier.channel, events=list(BOOKING_EVENTS), active=notifier.active)

@app.delete("/api/realtime/subscription", status_code=status.HTTP_204_NO_CONTENT)
async def unsubscribe_bookings(viewer: Viewer = Depends(get_viewer)) -> Response:
    if not await SUBSCRIPTIONS.unsubscribe(viewer.id):
        raise HTTPException(status_code=404, detail=f"No subscription on {channel_name(viewer.id)}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
