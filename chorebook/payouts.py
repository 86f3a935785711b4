from .errors import OperationFailed, ValidationError
from .gateway import Gateway
from .schemas import Booking, Earnings, PayoutState

EARNINGS_PATH = "/payments/provider-earnings"
EARNINGS_PERIODS = ("week", "month", "year", "all")


def payout_status(booking: Booking) -> str:
    if booking.payout_status.status == PayoutState.PROCESSED:
        return "paid"
    completion = booking.completion_status
    if completion.provider_marked_completed and completion.customer_confirmed:
        return "paid"
    return "pending"


async def fetch_earnings(gateway: Gateway, period: str = "month") -> Earnings:
    if period not in EARNINGS_PERIODS:
        raise ValidationError(f"Unknown earnings period: {period}")
    body = await gateway.get(EARNINGS_PATH, params={"period": period})
    if not body.get("success") or not body.get("data"):
        raise OperationFailed(body.get("message") or "Failed to fetch earnings data")
    return Earnings.model_validate(body["data"])
