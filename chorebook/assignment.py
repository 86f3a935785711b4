import logging
from contextlib import asynccontextmanager
from typing import Iterable, List

from .errors import ActionInProgress, AssignmentConflict, ConflictError, OperationFailed, ValidationError
from .gateway import Gateway
from .schemas import AssignmentStatus, Booking, BookingStatus, Pagination

logger = logging.getLogger(__name__)

ASSIGNED_PATH = "/booking/provider/assigned"
PAID_PATH = "/booking/provider/bookings/paid"
ACCEPT_PATH = "/booking/provider/bookings/accept-booking"
REJECT_PATH = "/booking/provider/bookings/reject-booking"
AVAILABILITY_PATH = "/booking/provider/bookings/availability"

RESOLVED_STATUSES = (BookingStatus.COMPLETED, BookingStatus.CANCELLED)


def can_take_action(booking: Booking) -> bool:
    return booking.assignment_status != AssignmentStatus.ACCEPTED and booking.status not in RESOLVED_STATUSES


def can_mark_complete(booking: Booking) -> bool:
    return booking.assignment_status == AssignmentStatus.ACCEPTED and booking.status not in RESOLVED_STATUSES


def is_actionable(booking: Booking) -> bool:
    return can_take_action(booking) or can_mark_complete(booking)


def _created_ts(booking: Booking) -> float:
    if booking.created_at is None:
        return float("-inf")
    return booking.created_at.timestamp()


def sort_for_action(bookings: Iterable[Booking]) -> List[Booking]:
    """Actionable bookings first, newest first within each group."""
    newest_first = sorted(bookings, key=_created_ts, reverse=True)
    return sorted(newest_first, key=lambda b: 0 if is_actionable(b) else 1)


def parse_bookings(body: dict, what: str) -> List[Booking]:
    if not body.get("success") or body.get("data") is None:
        raise OperationFailed(body.get("message") or f"Failed to fetch {what}")
    return [Booking.model_validate(item) for item in body["data"]]


class AssignmentArbiter:
    """
    Provider-side claim operations on paid bookings.

    The server decides who wins a booking. Local state only changes once the
    server has acknowledged an operation, so a failed or conflicting call
    leaves the cached bookings exactly as they were. Every operation is keyed
    by booking id and can be re-invoked after a network failure.
    """

    def __init__(self, gateway: Gateway):
        self.gateway = gateway
        self.pagination = Pagination()
        self._bookings: dict[str, Booking] = {}
        self._in_flight: set[str] = set()

    @property
    def bookings(self) -> List[Booking]:
        return sort_for_action(self._bookings.values())

    def get(self, booking_id: str) -> Booking | None:
        return self._bookings.get(booking_id)

    def apply(self, booking: Booking) -> None:
        self._bookings[booking.booking_id] = booking

    def in_flight(self, booking_id: str) -> bool:
        return booking_id in self._in_flight

    @asynccontextmanager
    async def _action(self, booking_id: str):
        if booking_id in self._in_flight:
            raise ActionInProgress(f"An action on booking {booking_id} is already in progress")
        self._in_flight.add(booking_id)
        try:
            yield
        finally:
            self._in_flight.discard(booking_id)

    async def _post(self, path: str, payload: dict, failure: str) -> dict:
        try:
            body = await self.gateway.post(path, payload)
        except ConflictError as e:
            logger.info("assignment conflict on %s: %s", payload.get("bookingId"), e.message)
            raise AssignmentConflict(e.status_code, e.message)
        if not body.get("success"):
            raise OperationFailed(body.get("message") or failure)
        return body

    # -------- listing --------

    async def load_assigned(self, page: int = 1) -> List[Booking]:
        body = await self.gateway.get(ASSIGNED_PATH, params={"page": page})
        bookings = parse_bookings(body, "assigned bookings")
        self.pagination = Pagination.model_validate(body.get("pagination") or {"currentPage": page})
        self._bookings = {b.booking_id: b for b in bookings}
        return self.bookings

    async def load_paid(self) -> List[Booking]:
        body = await self.gateway.get(PAID_PATH)
        bookings = parse_bookings(body, "bookings")
        for b in bookings:
            self._bookings[b.booking_id] = b
        return sort_for_action(bookings)

    # -------- claim operations --------

    async def toggle_availability(self, booking_id: str, desired: bool) -> Booking | None:
        async with self._action(booking_id):
            await self._post(
                AVAILABILITY_PATH,
                {"bookingId": booking_id, "isAvailable": desired},
                "Failed to toggle availability",
            )
        current = self._bookings.get(booking_id)
        if current is not None:
            current = current.model_copy(update={"is_available": desired})
            self._bookings[booking_id] = current
        logger.info("availability set: booking_id=%s available=%s", booking_id, desired)
        return current

    async def accept(self, booking_id: str) -> Booking | None:
        async with self._action(booking_id):
            await self._post(ACCEPT_PATH, {"bookingId": booking_id}, "Failed to accept booking")
        current = self._bookings.get(booking_id)
        if current is not None:
            current = current.model_copy(
                update={
                    "assignment_status": AssignmentStatus.ACCEPTED,
                    "status": BookingStatus.CONFIRMED,
                }
            )
            self._bookings[booking_id] = current
        logger.info("booking accepted: booking_id=%s", booking_id)
        return current

    async def reject(self, booking_id: str, reason: str) -> None:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Please provide a rejection reason.")
        async with self._action(booking_id):
            await self._post(
                REJECT_PATH,
                {"bookingId": booking_id, "rejectionReason": reason},
                "Failed to reject booking",
            )
        self._bookings.pop(booking_id, None)
        logger.info("booking rejected: booking_id=%s", booking_id)
