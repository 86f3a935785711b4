from ..schemas import ApiModel


class BookingIdRequest(ApiModel):
    booking_id: str


class RejectBookingRequest(ApiModel):
    booking_id: str
    rejection_reason: str = ""


class AvailabilityRequest(ApiModel):
    booking_id: str
    is_available: bool


class VerifyPaymentRequest(ApiModel):
    booking_id: str
    order_id: str
