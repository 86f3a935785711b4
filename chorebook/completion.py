import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Iterable, List

from .assignment import can_mark_complete, parse_bookings
from .errors import OperationFailed, PreconditionFailed
from .gateway import Gateway
from .schemas import Booking, BookingStatus, PaymentStatus

logger = logging.getLogger(__name__)

COMPLETE_PATH = "/booking/provider/bookings/complete"
CONFIRM_PATH = "/booking/provider/bookings/confirm"
USER_BOOKINGS_PATH = "/booking/user"


def can_confirm_completion(booking: Booking) -> bool:
    return (
        booking.payment_status == PaymentStatus.PAID
        and booking.status == BookingStatus.COMPLETED
        and booking.completion_status.provider_marked_completed
        and not booking.completion_status.customer_confirmed
    )


def confirmable(bookings: Iterable[Booking]) -> List[Booking]:
    return [b for b in bookings if can_confirm_completion(b)]


def booking_stats(bookings: Iterable[Booking]) -> dict:
    counts = Counter(b.status.value for b in bookings)
    return {"total": sum(counts.values()), **counts}


class CompletionProtocol:
    """
    Two-party completion: the assigned provider marks the job done, then the
    customer confirms it. The customer confirmation is what makes the booking
    eligible for payout, so it is refused until the provider side is recorded.
    """

    def __init__(self, gateway: Gateway, clock=None):
        self.gateway = gateway
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _post(self, path: str, booking_id: str, failure: str) -> dict:
        body = await self.gateway.post(path, {"bookingId": booking_id})
        if not body.get("success"):
            raise OperationFailed(body.get("message") or failure)
        return body

    async def mark_completed(self, booking: Booking) -> Booking:
        if not can_mark_complete(booking):
            raise PreconditionFailed("Only an accepted, open booking can be marked as completed")

        await self._post(COMPLETE_PATH, booking.booking_id, "Failed to mark booking as completed")

        completion = booking.completion_status.model_copy(
            update={"provider_marked_completed": True, "completion_date": self._clock()}
        )
        logger.info("booking marked completed: booking_id=%s", booking.booking_id)
        return booking.model_copy(update={"status": BookingStatus.COMPLETED, "completion_status": completion})

    async def confirm_completion(self, booking: Booking) -> Booking:
        if not booking.completion_status.provider_marked_completed:
            raise PreconditionFailed("The provider has not marked this booking as completed yet")
        if booking.completion_status.customer_confirmed:
            raise PreconditionFailed("Completion has already been confirmed")
        if not can_confirm_completion(booking):
            raise PreconditionFailed("Only a paid, completed booking can be confirmed")

        await self._post(CONFIRM_PATH, booking.booking_id, "Failed to confirm booking completion")

        completion = booking.completion_status.model_copy(update={"customer_confirmed": True})
        logger.info("booking completion confirmed: booking_id=%s", booking.booking_id)
        return booking.model_copy(update={"completion_status": completion})

    async def load_customer_bookings(self) -> List[Booking]:
        body = await self.gateway.get(USER_BOOKINGS_PATH)
        return parse_bookings(body, "bookings")
