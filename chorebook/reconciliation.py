import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Mapping

import pydantic
from dateutil import parser

from .config import MAX_POLL_ATTEMPTS, POLL_INTERVAL_SECONDS, REFUND_COOLDOWN_SECONDS
from .errors import ApiError, ChorebookError, NetworkError, ReauthenticationRequired, RecoveryAction
from .gateway import Gateway
from .markers import MARKER_FAILED, MARKER_SUCCESS
from .schemas import Booking, BookingStatus, PaymentStatus, PaymentStatusSnapshot, VerifyPaymentResponse

logger = logging.getLogger(__name__)

STATUS_PATH = "/payment/status/{booking_id}"
VERIFY_PATH = "/payments/verify-paypal"

REFUND_HINT = "recently refunded"


class VerificationState(str, Enum):
    VERIFYING = "verifying"
    SUCCESS = "success"
    FAILED = "failed"
    UNAUTHENTICATED = "unauthenticated"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ReconciliationResult:
    state: VerificationState
    message: str | None = None
    booking: Booking | None = None
    retry_blocked: bool = False
    attempts: int = 0

    @property
    def recovery(self) -> RecoveryAction | None:
        if self.state == VerificationState.SUCCESS:
            return None
        if self.state == VerificationState.UNAUTHENTICATED:
            return RecoveryAction.REAUTHENTICATE
        if self.retry_blocked:
            return RecoveryAction.GO_BACK
        return RecoveryAction.RETRY


def _utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class PaymentReconciler:
    """
    Resolves a redirect-back from the payment processor into a final payment
    state by polling the verification endpoint.

    verifying -> success | failed | unauthenticated | timed_out

    At most `max_attempts` verification calls are made, `poll_interval`
    seconds apart. A booking refunded within the cooldown window fails
    immediately without any verification call. Refund blocks and timeouts
    leave a write-once session marker so the same (booking, order) pair is
    not re-verified later in the session; a plain decline leaves none and can
    be retried. cancel() stops the loop: no further requests, no further
    state changes.
    """

    def __init__(
        self,
        gateway: Gateway,
        markers,
        booking_id: str | None,
        order_id: str | None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_attempts: int = MAX_POLL_ATTEMPTS,
        cooldown_seconds: float = REFUND_COOLDOWN_SECONDS,
        clock=None,
    ):
        self.gateway = gateway
        self.markers = markers
        self.booking_id = booking_id
        self.order_id = order_id
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.state = VerificationState.VERIFYING
        self.attempts = 0
        self.result: ReconciliationResult | None = None
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @classmethod
    def from_redirect(cls, gateway: Gateway, markers, params: Mapping[str, str], **kwargs):
        # the processor sends the order id back as `token`
        order_id = params.get("token") or params.get("orderId")
        return cls(gateway, markers, params.get("bookingId"), order_id, **kwargs)

    # -------- lifecycle --------

    def start(self) -> asyncio.Task:
        if self._task is None:
            self._task = asyncio.create_task(self.run())
        return self._task

    def cancel(self) -> None:
        self._stop_event.set()
        if self._task and not self._task.done():
            self._task.cancel()

    @property
    def cancelled(self) -> bool:
        return self._stop_event.is_set()

    async def wait(self) -> ReconciliationResult | None:
        task = self.start()
        try:
            return await task
        except asyncio.CancelledError:
            if self.cancelled:
                return None
            raise

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, *exc):
        self.cancel()
        if self._task:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    # -------- state machine --------

    async def _finish(self, state, message=None, booking=None, retry_blocked=False, marker=None):
        if self.cancelled:
            return None
        if marker:
            await self.markers.mark(self.booking_id, self.order_id, marker)
        self.state = state
        self.result = ReconciliationResult(
            state=state,
            message=message,
            booking=booking,
            retry_blocked=retry_blocked,
            attempts=self.attempts,
        )
        log = logger.info if state == VerificationState.SUCCESS else logger.warning
        log(
            "payment reconciliation %s: booking_id=%s order_id=%s attempts=%d message=%s",
            state.value,
            self.booking_id,
            self.order_id,
            self.attempts,
            message,
        )
        return self.result

    async def _sleep(self) -> bool:
        """Wait one poll interval. Returns True if stopped meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
            return True
        except asyncio.TimeoutError:
            return False

    async def _refund_cooldown_active(self) -> bool:
        path = STATUS_PATH.format(booking_id=self.booking_id)
        try:
            body = await self.gateway.get(path)
        except ReauthenticationRequired:
            raise
        except ChorebookError as e:
            # never block a legitimate payment because the pre-check failed
            logger.warning("booking status check failed for %s: %s", self.booking_id, e.message)
            return False

        if not body.get("success") or not body.get("data"):
            logger.warning("booking status check failed for %s: %s", self.booking_id, body.get("message"))
            return False

        try:
            snapshot = PaymentStatusSnapshot.model_validate(body["data"])
        except pydantic.ValidationError:
            return False

        if snapshot.status != BookingStatus.CANCELLED or snapshot.payment_status != PaymentStatus.REFUNDED:
            return False

        refunded_at = snapshot.payment_ids.payment_completed_at
        if not refunded_at:
            return False
        try:
            refunded = _utc(parser.isoparse(refunded_at))
        except ValueError:
            return False

        return (self._clock() - refunded).total_seconds() < self.cooldown_seconds

    async def _verify_once(self):
        """One attempt. Returns a final result, or None to keep polling."""
        if await self._refund_cooldown_active():
            return await self._finish(
                VerificationState.FAILED,
                "This booking was recently refunded. Please wait 5 minutes before retrying.",
                retry_blocked=True,
                marker=MARKER_FAILED,
            )

        self.attempts += 1
        try:
            body = await self.gateway.post(VERIFY_PATH, {"bookingId": self.booking_id, "orderId": self.order_id})
        except NetworkError as e:
            logger.warning("payment verification attempt %d failed, retrying: %s", self.attempts, e.message)
            return None
        except ApiError as e:
            if e.status_code >= 500:
                logger.warning("payment verification attempt %d failed, retrying: %s", self.attempts, e.message)
                return None
            return await self._declined(e.message)

        try:
            resp = VerifyPaymentResponse.model_validate(body)
        except pydantic.ValidationError:
            logger.warning("malformed verification response for %s", self.booking_id)
            return None

        if resp.success:
            return await self._finish(VerificationState.SUCCESS, booking=resp.data, marker=MARKER_SUCCESS)

        if resp.status == "pending":
            return None

        return await self._declined(resp.message)

    async def _declined(self, message: str | None):
        # only refund-related failures block the pair for the rest of the session
        message = message or "Payment verification failed"
        blocked = REFUND_HINT in message.lower()
        return await self._finish(
            VerificationState.FAILED,
            message,
            retry_blocked=blocked,
            marker=MARKER_FAILED if blocked else None,
        )

    async def run(self) -> ReconciliationResult | None:
        if not self.gateway.session.is_authenticated:
            return await self._finish(
                VerificationState.UNAUTHENTICATED,
                "Please log in to view your booking details and confirm your payment.",
            )

        if not self.order_id or not self.booking_id:
            return await self._finish(
                VerificationState.FAILED,
                "Missing payment information. Please try booking again.",
            )

        if await self.markers.get(self.booking_id, self.order_id) == MARKER_FAILED:
            return await self._finish(
                VerificationState.FAILED,
                "Payment verification already failed for this booking. Please wait 5 minutes or contact support.",
                retry_blocked=True,
            )

        try:
            # _verify_once counts an attempt only once the verify call is issued
            while self.attempts < self.max_attempts:
                result = await self._verify_once()
                if result is not None or self.cancelled:
                    return result
                if self.attempts >= self.max_attempts:
                    break
                if await self._sleep():
                    return None
        except ReauthenticationRequired as e:
            return await self._finish(VerificationState.UNAUTHENTICATED, e.message)

        return await self._finish(
            VerificationState.TIMED_OUT,
            "Payment verification timed out. Please try again or contact support.",
            retry_blocked=True,
            marker=MARKER_FAILED,
        )
