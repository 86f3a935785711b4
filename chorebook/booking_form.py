import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time
from enum import IntEnum

from dateutil import parser

from .config import SUBMIT_TIMEOUT_SECONDS
from .errors import ChorebookError, NetworkError, OperationFailed, SubmissionInProgress, ValidationError
from .pricing import Quote, quote
from .schemas import (
    CreateBookingRequest,
    CreatedBooking,
    CustomerDetails,
    DateRange,
    ServiceLocation,
    ServiceRef,
    TimeSlot,
)

logger = logging.getLogger(__name__)

CREATE_PATH = "/booking/create"

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^\+?[\d\s-]{10,}$")
MIN_PHONE_DIGITS = 10
MIN_POSTAL_CODE_LENGTH = 5


class Stage(IntEnum):
    SCHEDULE = 1
    DETAILS = 2
    CONFIRMATION = 3


def _parse_date(value, error: str) -> date:
    # datetime is a date subclass; keep only the calendar day
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return parser.isoparse(str(value)).date()
    except ValueError:
        raise ValidationError(error)


def _parse_time(value) -> time:
    if isinstance(value, time):
        return value
    try:
        return time.fromisoformat(str(value))
    except ValueError:
        raise ValidationError("Invalid start or end time")


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_RE.match(value or ""))


def is_valid_phone(value: str) -> bool:
    value = value or ""
    if not PHONE_RE.match(value):
        return False
    return sum(ch.isdigit() for ch in value) >= MIN_PHONE_DIGITS


@dataclass(frozen=True)
class Schedule:
    single_date: date | None
    date_range: DateRange | None
    time_slot: TimeSlot


@dataclass(frozen=True)
class BookingSummary:
    service: ServiceRef
    schedule: Schedule
    customer: CustomerDetails
    location: ServiceLocation
    special_requests: str
    payment_method: str
    quote: Quote


class BookingForm:
    """
    Three-stage booking request form.

    next() only advances when the current stage validates; previous() always
    goes back without validating. submit() is only allowed from the
    confirmation stage and refuses to run twice concurrently.
    """

    def __init__(self, customer_email: str = "", today=date.today):
        self._today = today
        self._default_email = customer_email
        self._submitting = False
        self.reset()

    def reset(self) -> None:
        self.stage = Stage.SCHEDULE
        self.error: str | None = None
        self.is_date_range = False
        self.booking_date = None
        self.start_date = None
        self.end_date = None
        self.start_time = None
        self.end_time = None
        self.customer_name = ""
        self.customer_email = self._default_email
        self.customer_phone = ""
        self.address = ""
        self.city = ""
        self.postal_code = ""
        self.special_requests = ""
        self.payment_method = "paypal"

    @property
    def is_submitting(self) -> bool:
        return self._submitting

    def set_date_mode(self, is_range: bool) -> None:
        self.is_date_range = is_range
        self.error = None
        self.booking_date = None
        self.start_date = None
        self.end_date = None

    # -------- stage predicates --------

    def validate_schedule(self) -> Schedule:
        today = self._today()

        single_date = None
        date_range = None
        if self.is_date_range:
            if not self.start_date or not self.end_date:
                raise ValidationError("Please select both start and end dates")
            start = _parse_date(self.start_date, "Invalid start or end date")
            end = _parse_date(self.end_date, "Invalid start or end date")
            if start < today:
                raise ValidationError("Start date cannot be in the past")
            if end < start:
                raise ValidationError("End date cannot be before start date")
            date_range = DateRange(start_date=start, end_date=end)
        else:
            if not self.booking_date:
                raise ValidationError("Please select a booking date")
            single_date = _parse_date(self.booking_date, "Invalid booking date")
            if single_date < today:
                raise ValidationError("Booking date cannot be in the past")

        if not self.start_time or not self.end_time:
            raise ValidationError("Please fill in both start time and end time")
        start_time = _parse_time(self.start_time)
        end_time = _parse_time(self.end_time)
        if start_time >= end_time:
            raise ValidationError("End time must be after start time")

        return Schedule(
            single_date=single_date,
            date_range=date_range,
            time_slot=TimeSlot(start_time=start_time, end_time=end_time),
        )

    def validate_details(self) -> tuple[CustomerDetails, ServiceLocation]:
        required = [
            self.customer_name,
            self.customer_email,
            self.customer_phone,
            self.address,
            self.city,
            self.postal_code,
        ]
        if not all((v or "").strip() for v in required):
            raise ValidationError("Please fill in all customer details and service location fields")
        if not is_valid_email(self.customer_email):
            raise ValidationError("Please enter a valid email address")
        if not is_valid_phone(self.customer_phone):
            raise ValidationError("Please enter a valid phone number")
        if len(self.postal_code.strip()) < MIN_POSTAL_CODE_LENGTH:
            raise ValidationError("Please enter a valid postal code")

        customer = CustomerDetails(
            name=self.customer_name.strip(),
            email=self.customer_email.strip(),
            phone=self.customer_phone.strip(),
        )
        location = ServiceLocation(
            address=self.address.strip(),
            city=self.city.strip(),
            postal_code=self.postal_code.strip(),
        )
        return customer, location

    # -------- transitions --------

    def next(self) -> Stage:
        self.error = None
        try:
            if self.stage == Stage.SCHEDULE:
                self.validate_schedule()
            elif self.stage == Stage.DETAILS:
                self.validate_details()
            else:
                return self.stage
        except ValidationError as e:
            self.error = e.message
            raise
        self.stage = Stage(self.stage + 1)
        return self.stage

    def previous(self) -> Stage:
        self.error = None
        if self.stage > Stage.SCHEDULE:
            self.stage = Stage(self.stage - 1)
        return self.stage

    # -------- price preview / summary --------

    def quote(self, rate) -> Quote | None:
        """Live price preview; None while the schedule is incomplete or invalid."""
        try:
            schedule = self.validate_schedule()
        except ValidationError:
            return None
        return quote(rate, schedule.time_slot.start_time, schedule.time_slot.end_time, schedule.date_range)

    def summary(self, service: ServiceRef) -> BookingSummary:
        schedule = self.validate_schedule()
        customer, location = self.validate_details()
        return BookingSummary(
            service=service,
            schedule=schedule,
            customer=customer,
            location=location,
            special_requests=self.special_requests,
            payment_method=self.payment_method,
            quote=quote(
                service.price,
                schedule.time_slot.start_time,
                schedule.time_slot.end_time,
                schedule.date_range,
            ),
        )

    def build_request(self, service: ServiceRef) -> CreateBookingRequest:
        s = self.summary(service)
        return CreateBookingRequest(
            service_id=service.id,
            booking_date=s.schedule.single_date,
            date_range=s.schedule.date_range,
            time_slot=s.schedule.time_slot,
            customer_details=s.customer,
            service_location=s.location,
            special_requests=s.special_requests,
            payment_method=s.payment_method,
        )

    # -------- submission --------

    async def submit(self, gateway, service: ServiceRef, timeout: float = SUBMIT_TIMEOUT_SECONDS) -> CreatedBooking:
        if self._submitting:
            raise SubmissionInProgress("Submission already in progress")
        if self.stage != Stage.CONFIRMATION:
            raise ValidationError("Please review your booking before submitting")

        self._submitting = True
        self.error = None
        try:
            payload = self.build_request(service).to_api()
            try:
                body = await asyncio.wait_for(gateway.post(CREATE_PATH, payload), timeout)
            except asyncio.TimeoutError:
                raise NetworkError("Booking request timed out. Please try again.")

            if not body.get("success"):
                raise OperationFailed(body.get("message") or "Failed to create booking")

            data = body.get("data") or {}
            if not data.get("bookingId"):
                raise OperationFailed("Booking response did not include a booking id")
            created = CreatedBooking(
                booking_id=data["bookingId"],
                approval_link=(data.get("paymentOrder") or {}).get("approvalLink"),
            )
        except ChorebookError as e:
            self.error = e.message
            raise
        finally:
            self._submitting = False

        logger.info("booking created: booking_id=%s", created.booking_id)
        if self.customer_email:
            self._default_email = self.customer_email
        self.reset()
        return created
