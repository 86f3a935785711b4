import asyncio
import math
import uuid
from datetime import datetime, timedelta, timezone

from ..config import REFUND_COOLDOWN_SECONDS
from ..errors import ValidationError
from ..pricing import quote
from ..schemas import (
    AssignmentStatus,
    Booking,
    BookingDate,
    BookingStatus,
    CreateBookingRequest,
    EarningsEntry,
    Earnings,
    PaymentStatus,
    PayoutState,
    ServiceRef,
)

PAGE_SIZE = 10
PROVIDER_PAYOUT_SHARE = 0.85

SETTLEMENT_PENDING = "pending"
SETTLEMENT_COMPLETED = "completed"
SETTLEMENT_FAILED = "failed"

PERIOD_DAYS = {"week": 7, "month": 30, "year": 365}

APPROVAL_URL = "https://www.sandbox.paypal.com/checkoutnow?token={order_id}"


class StoreError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class BookingStore:
    """
    In-memory authoritative booking state.

    Every mutation runs under one lock, so accept() is a compare-and-swap on
    the assignee: the first provider wins and everybody else gets a 409.
    """

    def __init__(self, clock=None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = asyncio.Lock()
        self.services: dict[str, ServiceRef] = {}
        self._bookings: dict[str, Booking] = {}
        self._owner: dict[str, str] = {}
        self._assignee: dict[str, str] = {}
        self._claims: dict[str, dict[str, bool]] = {}
        self._rejected: dict[str, set[str]] = {}
        self._orders: dict[str, str] = {}
        self._settlements: dict[str, str] = {}
        self._refunded_at: dict[str, datetime] = {}

    def add_service(self, service_id: str, name: str, price: float) -> ServiceRef:
        service = ServiceRef(id=service_id, name=name, price=price)
        self.services[service_id] = service
        return service

    def get(self, booking_id: str) -> Booking:
        booking = self._bookings.get(booking_id)
        if booking is None:
            raise StoreError(404, "Booking not found")
        return booking

    def assignee(self, booking_id: str) -> str | None:
        return self._assignee.get(booking_id)

    def _put(self, booking: Booking, **changes) -> Booking:
        updated = booking.model_copy(update=changes)
        self._bookings[booking.booking_id] = updated
        return updated

    def _project(self, booking: Booking, provider: str) -> Booking:
        return booking.model_copy(update={"is_available": self._claims.get(booking.booking_id, {}).get(provider, False)})

    # -------- customer --------

    async def create(self, customer: str, req: CreateBookingRequest) -> tuple[Booking, str, str]:
        service = self.services.get(req.service_id)
        if service is None:
            raise StoreError(404, "Service not found")

        today = self._clock().date()
        if req.date_range is not None:
            if req.date_range.start_date < today:
                raise StoreError(400, "Start date cannot be in the past")
            booking_date = BookingDate(is_date_range=True, date_range=req.date_range)
        elif req.booking_date is not None:
            if req.booking_date < today:
                raise StoreError(400, "Booking date cannot be in the past")
            booking_date = BookingDate(single_date=req.booking_date)
        else:
            raise StoreError(400, "Please select a booking date")

        try:
            q = quote(service.price, req.time_slot.start_time, req.time_slot.end_time, req.date_range)
        except ValidationError as e:
            raise StoreError(400, e.message)

        async with self._lock:
            booking_id = uuid.uuid4().hex[:12].upper()
            order_id = uuid.uuid4().hex[:17].upper()
            booking = Booking(
                booking_id=booking_id,
                service=service,
                booking_date=booking_date,
                time_slot=req.time_slot,
                customer_details=req.customer_details,
                service_location=req.service_location,
                special_requests=req.special_requests,
                payment_method=req.payment_method,
                total_price=float(q.total_price),
                created_at=self._clock(),
            )
            self._bookings[booking_id] = booking
            self._owner[booking_id] = customer
            self._orders[order_id] = booking_id
            self._settlements[order_id] = SETTLEMENT_PENDING
        return booking, order_id, APPROVAL_URL.format(order_id=order_id)

    def list_for_customer(self, customer: str) -> list[Booking]:
        return [b for bid, b in self._bookings.items() if self._owner.get(bid) == customer]

    async def confirm(self, customer: str, booking_id: str) -> Booking:
        async with self._lock:
            booking = self.get(booking_id)
            if self._owner.get(booking_id) != customer:
                raise StoreError(403, "Not your booking")
            completion = booking.completion_status
            if completion.customer_confirmed:
                return booking
            if booking.payment_status != PaymentStatus.PAID:
                raise StoreError(409, "Booking has not been paid")
            if booking.status != BookingStatus.COMPLETED or not completion.provider_marked_completed:
                raise StoreError(409, "Provider has not marked this booking as completed")
            now = self._clock()
            return self._put(
                booking,
                completion_status=completion.model_copy(update={"customer_confirmed": True}),
                payout_status=booking.payout_status.model_copy(
                    update={"status": PayoutState.PROCESSED, "processed_at": now}
                ),
            )

    # -------- provider --------

    def _visible_to(self, booking: Booking, provider: str) -> bool:
        bid = booking.booking_id
        if booking.payment_status != PaymentStatus.PAID:
            return False
        if provider in self._rejected.get(bid, set()):
            return False
        holder = self._assignee.get(bid)
        return holder is None or holder == provider

    def list_assigned(self, provider: str, page: int = 1) -> tuple[list[Booking], dict]:
        visible = [self._project(b, provider) for b in self._bookings.values() if self._visible_to(b, provider)]
        visible.sort(key=lambda b: b.created_at or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        total_pages = max(1, math.ceil(len(visible) / PAGE_SIZE))
        page = min(max(1, page), total_pages)
        start = (page - 1) * PAGE_SIZE
        pagination = {"currentPage": page, "totalPages": total_pages, "totalBookings": len(visible)}
        return visible[start:start + PAGE_SIZE], pagination

    def list_paid(self, provider: str) -> list[Booking]:
        return [
            self._project(b, provider)
            for bid, b in self._bookings.items()
            if self._visible_to(b, provider) and bid not in self._assignee
        ]

    def _paid_open(self, booking_id: str) -> Booking:
        booking = self.get(booking_id)
        if booking.payment_status != PaymentStatus.PAID:
            raise StoreError(400, "Booking has not been paid")
        if booking.status == BookingStatus.CANCELLED:
            raise StoreError(409, "Booking has been cancelled")
        return booking

    async def set_availability(self, provider: str, booking_id: str, desired: bool) -> Booking:
        async with self._lock:
            booking = self._paid_open(booking_id)
            holder = self._assignee.get(booking_id)
            if holder is not None and holder != provider:
                raise StoreError(409, "Booking is already assigned to another provider")
            self._claims.setdefault(booking_id, {})[provider] = desired
            return self._project(booking, provider)

    async def accept(self, provider: str, booking_id: str) -> Booking:
        async with self._lock:
            booking = self._paid_open(booking_id)
            holder = self._assignee.get(booking_id)
            if holder == provider:
                return booking
            if holder is not None:
                raise StoreError(409, "Booking is already assigned to another provider")
            if provider in self._rejected.get(booking_id, set()):
                raise StoreError(409, "You have already rejected this booking")
            self._assignee[booking_id] = provider
            return self._put(booking, assignment_status=AssignmentStatus.ACCEPTED, status=BookingStatus.CONFIRMED)

    async def reject(self, provider: str, booking_id: str, reason: str) -> None:
        if not (reason or "").strip():
            raise StoreError(400, "Rejection reason is required")
        async with self._lock:
            self._paid_open(booking_id)
            if self._assignee.get(booking_id) == provider:
                raise StoreError(409, "An accepted booking cannot be rejected")
            self._rejected.setdefault(booking_id, set()).add(provider)

    async def complete(self, provider: str, booking_id: str) -> Booking:
        async with self._lock:
            booking = self.get(booking_id)
            if self._assignee.get(booking_id) != provider:
                raise StoreError(409, "Booking is not assigned to you")
            if booking.completion_status.provider_marked_completed:
                return booking
            if booking.status in (BookingStatus.COMPLETED, BookingStatus.CANCELLED):
                raise StoreError(409, f"Booking is {booking.status.value}")
            completion = booking.completion_status.model_copy(
                update={"provider_marked_completed": True, "completion_date": self._clock()}
            )
            return self._put(booking, status=BookingStatus.COMPLETED, completion_status=completion)

    def earnings(self, provider: str, period: str) -> Earnings:
        since = None
        if period in PERIOD_DAYS:
            since = self._clock() - timedelta(days=PERIOD_DAYS[period])
        entries = []
        for bid, b in self._bookings.items():
            if self._assignee.get(bid) != provider or b.payout_status.status != PayoutState.PROCESSED:
                continue
            paid_at = b.payout_status.processed_at
            if since is not None and paid_at is not None and paid_at < since:
                continue
            entries.append(
                EarningsEntry(
                    booking_id=bid,
                    service_name=b.service.name if b.service else "",
                    total_price=b.total_price,
                    payout_amount=round(b.total_price * PROVIDER_PAYOUT_SHARE, 2),
                    completion_date=b.completion_status.completion_date,
                    payout_date=paid_at,
                )
            )
        return Earnings(
            total_earnings=round(sum(e.payout_amount for e in entries), 2),
            booking_count=len(entries),
            bookings=entries,
        )

    # -------- payments --------

    def payment_snapshot(self, customer: str, booking_id: str) -> dict:
        booking = self.get(booking_id)
        if self._owner.get(booking_id) != customer:
            raise StoreError(403, "Not your booking")
        refunded_at = self._refunded_at.get(booking_id)
        return {
            "status": booking.status.value,
            "paymentStatus": booking.payment_status.value,
            "paymentIds": {"paymentCompletedAt": refunded_at.isoformat() if refunded_at else None},
        }

    def settle(self, order_id: str, outcome: str = SETTLEMENT_COMPLETED) -> None:
        """Processor-side settlement of an order (completed or failed)."""
        if order_id not in self._orders:
            raise StoreError(404, "Order not found")
        self._settlements[order_id] = outcome

    async def verify(self, customer: str, booking_id: str, order_id: str) -> dict:
        async with self._lock:
            booking = self.get(booking_id)
            if self._owner.get(booking_id) != customer:
                raise StoreError(403, "Not your booking")
            if self._orders.get(order_id) != booking_id:
                raise StoreError(400, "Order does not belong to this booking")

            refunded_at = self._refunded_at.get(booking_id)
            if refunded_at is not None:
                if (self._clock() - refunded_at).total_seconds() < REFUND_COOLDOWN_SECONDS:
                    return {"success": False, "message": "This booking was recently refunded. Please wait 5 minutes."}
                return {"success": False, "message": "This booking has been refunded"}

            if booking.payment_status == PaymentStatus.PAID:
                return {"success": True, "data": booking.to_api()}

            outcome = self._settlements.get(order_id, SETTLEMENT_PENDING)
            if outcome == SETTLEMENT_PENDING:
                return {"success": False, "status": "pending", "message": "Payment is still pending"}
            if outcome == SETTLEMENT_FAILED:
                self._put(booking, payment_status=PaymentStatus.FAILED)
                return {"success": False, "message": "Payment was declined by PayPal"}

            booking = self._put(booking, payment_status=PaymentStatus.PAID)
            return {"success": True, "data": booking.to_api()}

    async def refund(self, booking_id: str) -> Booking:
        async with self._lock:
            booking = self.get(booking_id)
            if booking.payout_status.status == PayoutState.PROCESSED:
                raise StoreError(409, "Payout already processed")
            self._refunded_at[booking_id] = self._clock()
            self._assignee.pop(booking_id, None)
            return self._put(booking, status=BookingStatus.CANCELLED, payment_status=PaymentStatus.REFUNDED)
