from datetime import date, datetime, time
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AssignmentStatus(str, Enum):
    UNASSIGNED = "unassigned"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PayoutState(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"


class ApiModel(BaseModel):
    # server speaks camelCase; python side uses snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class DateRange(ApiModel):
    start_date: date
    end_date: date


class TimeSlot(ApiModel):
    start_time: time
    end_time: time


class BookingDate(ApiModel):
    is_date_range: bool = False
    single_date: Optional[date] = None
    date_range: Optional[DateRange] = None


class CustomerDetails(ApiModel):
    name: str
    email: str
    phone: str


class ServiceLocation(ApiModel):
    address: str
    city: str
    postal_code: str


class ServiceRef(ApiModel):
    id: str = Field(alias="_id")
    name: str = ""
    price: float = 0.0


class CompletionStatus(ApiModel):
    provider_marked_completed: bool = False
    customer_confirmed: bool = False
    completion_date: Optional[datetime] = None


class PayoutStatus(ApiModel):
    status: PayoutState = PayoutState.PENDING
    processed_at: Optional[datetime] = None


class Booking(ApiModel):
    booking_id: str
    service: Optional[ServiceRef] = None
    booking_date: Optional[BookingDate] = None
    time_slot: Optional[TimeSlot] = None
    customer_details: Optional[CustomerDetails] = None
    service_location: Optional[Union[ServiceLocation, str]] = None
    special_requests: str = ""
    payment_method: str = "paypal"
    total_price: float = 0.0
    status: BookingStatus = BookingStatus.PENDING
    assignment_status: AssignmentStatus = AssignmentStatus.UNASSIGNED
    payment_status: PaymentStatus = PaymentStatus.PENDING
    completion_status: CompletionStatus = Field(default_factory=CompletionStatus)
    payout_status: PayoutStatus = Field(default_factory=PayoutStatus)
    is_available: bool = False
    created_at: Optional[datetime] = None


class Pagination(ApiModel):
    current_page: int = 1
    total_pages: int = 1
    total_bookings: int = 0


class BookingPage(ApiModel):
    bookings: List[Booking]
    pagination: Pagination = Field(default_factory=Pagination)


# ---- Requests ----

class CreateBookingRequest(ApiModel):
    service_id: str
    booking_date: Optional[date] = None
    date_range: Optional[DateRange] = None
    time_slot: TimeSlot
    customer_details: CustomerDetails
    service_location: ServiceLocation
    special_requests: str = ""
    payment_method: str = "paypal"


class CreatedBooking(ApiModel):
    booking_id: str
    approval_link: Optional[str] = None


# ---- Payment ----

class PaymentIds(ApiModel):
    payment_completed_at: Optional[str] = None


class PaymentStatusSnapshot(ApiModel):
    status: BookingStatus
    payment_status: PaymentStatus
    payment_ids: PaymentIds = Field(default_factory=PaymentIds)


class VerifyPaymentResponse(ApiModel):
    success: bool = False
    status: Optional[str] = None
    data: Optional[Booking] = None
    message: Optional[str] = None


# ---- Earnings ----

class EarningsEntry(ApiModel):
    booking_id: str
    service_name: str = ""
    total_price: float = 0.0
    payout_amount: float = 0.0
    completion_date: Optional[datetime] = None
    payout_date: Optional[datetime] = None


class Earnings(ApiModel):
    total_earnings: float = 0.0
    booking_count: int = 0
    bookings: List[EarningsEntry] = Field(default_factory=list)
