import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from chorebook.errors import RecoveryAction
from chorebook.gateway import Gateway
from chorebook.markers import MARKER_FAILED, MARKER_SUCCESS, MemoryMarkerStore
from chorebook.reconciliation import VERIFY_PATH, PaymentReconciler, VerificationState
from chorebook.schemas import PaymentStatus
from chorebook.session import SessionContext

NOW = datetime(2030, 6, 1, 12, 0, tzinfo=timezone.utc)

PENDING = {"success": False, "status": "pending", "message": "Payment is still pending"}
PAID = {"success": True, "data": {"bookingId": "B1", "status": "pending", "paymentStatus": "paid"}}


def _snapshot(status="pending", payment_status="pending", completed_at=None):
    return {
        "success": True,
        "data": {"status": status, "paymentStatus": payment_status, "paymentIds": {"paymentCompletedAt": completed_at}},
    }


class PaymentServer:
    """Serves the status pre-check and a scripted sequence of verify replies."""

    def __init__(self, replies=None, snapshot=None, unauthorized=False):
        self.replies = list(replies or [])
        self.snapshot = snapshot or _snapshot()
        self.unauthorized = unauthorized
        self.status_calls = 0
        self.verify_calls = 0
        self.first_verify = asyncio.Event()

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.unauthorized:
            return httpx.Response(401, json={"message": "Invalid or expired token"})
        if request.url.path.startswith("/payment/status/"):
            self.status_calls += 1
            return httpx.Response(200, json=self.snapshot)
        assert request.url.path == VERIFY_PATH
        self.verify_calls += 1
        self.first_verify.set()
        reply = self.replies.pop(0) if self.replies else PENDING
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json=reply)

    @property
    def calls(self) -> int:
        return self.status_calls + self.verify_calls


@pytest.fixture
async def make_reconciler():
    opened = []

    def make(server, booking_id="B1", order_id="ORD1", markers=None, token="t", **kwargs):
        gw = Gateway(SessionContext(token=token), base_url="http://api.test", transport=httpx.MockTransport(server))
        opened.append(gw)
        kwargs.setdefault("poll_interval", 0.001)
        kwargs.setdefault("clock", lambda: NOW)
        return PaymentReconciler(gw, markers or MemoryMarkerStore(), booking_id, order_id, **kwargs)

    yield make

    for gw in opened:
        await gw.aclose()


async def test_always_pending_times_out_after_twelve_attempts(make_reconciler):
    server = PaymentServer()
    markers = MemoryMarkerStore()
    result = await make_reconciler(server, markers=markers).run()

    assert result.state == VerificationState.TIMED_OUT
    assert server.verify_calls == 12
    assert result.attempts == 12
    assert result.retry_blocked
    assert result.recovery == RecoveryAction.GO_BACK
    assert await markers.get("B1", "ORD1") == MARKER_FAILED


async def test_pending_then_success(make_reconciler):
    server = PaymentServer(replies=[PENDING, PENDING, PAID])
    markers = MemoryMarkerStore()
    reconciler = make_reconciler(server, markers=markers)
    result = await reconciler.run()

    assert result.state == VerificationState.SUCCESS
    assert result.attempts == 3
    assert result.booking.payment_status == PaymentStatus.PAID
    assert result.recovery is None
    assert reconciler.state == VerificationState.SUCCESS
    assert await markers.get("B1", "ORD1") == MARKER_SUCCESS


async def test_recent_refund_fails_without_verifying(make_reconciler):
    refunded_at = (NOW - timedelta(seconds=60)).isoformat()
    server = PaymentServer(snapshot=_snapshot("cancelled", "refunded", refunded_at))
    markers = MemoryMarkerStore()

    result = await make_reconciler(server, markers=markers).run()
    assert result.state == VerificationState.FAILED
    assert result.retry_blocked
    assert "recently refunded" in result.message
    assert server.verify_calls == 0
    assert result.attempts == 0
    assert await markers.get("B1", "ORD1") == MARKER_FAILED

    # a later attempt in the same session is blocked before any request
    before = server.calls
    again = await make_reconciler(server, markers=markers).run()
    assert again.state == VerificationState.FAILED
    assert again.retry_blocked
    assert server.calls == before


async def test_old_refund_does_not_block_verification(make_reconciler):
    refunded_at = (NOW - timedelta(minutes=10)).isoformat()
    server = PaymentServer(replies=[PAID], snapshot=_snapshot("cancelled", "refunded", refunded_at))
    result = await make_reconciler(server).run()
    assert result.state == VerificationState.SUCCESS
    assert server.verify_calls == 1


@pytest.mark.parametrize("seconds_ago,blocked", [(299, True), (300, False)])
async def test_refund_cooldown_boundary(make_reconciler, seconds_ago, blocked):
    refunded_at = (NOW - timedelta(seconds=seconds_ago)).isoformat()
    server = PaymentServer(replies=[PAID], snapshot=_snapshot("cancelled", "refunded", refunded_at))
    result = await make_reconciler(server).run()
    if blocked:
        assert result.state == VerificationState.FAILED
        assert server.verify_calls == 0
    else:
        assert result.state == VerificationState.SUCCESS
        assert server.verify_calls == 1


async def test_transient_failures_are_retried(make_reconciler):
    server = PaymentServer(
        replies=[
            httpx.ConnectError("connection refused"),
            httpx.Response(503, text="unavailable"),
            PAID,
        ]
    )
    result = await make_reconciler(server).run()
    assert result.state == VerificationState.SUCCESS
    assert server.verify_calls == 3


async def test_declined_payment_can_be_retried_later(make_reconciler):
    server = PaymentServer(replies=[{"success": False, "message": "Payment was declined by PayPal"}, PAID])
    markers = MemoryMarkerStore()
    result = await make_reconciler(server, markers=markers).run()

    assert result.state == VerificationState.FAILED
    assert not result.retry_blocked
    assert result.recovery == RecoveryAction.RETRY
    assert server.verify_calls == 1
    assert await markers.get("B1", "ORD1") is None

    # retrying in the same session reaches the server again
    again = await make_reconciler(server, markers=markers).run()
    assert again.state == VerificationState.SUCCESS
    assert server.verify_calls == 2
    assert await markers.get("B1", "ORD1") == MARKER_SUCCESS


async def test_refund_message_blocks_retry(make_reconciler):
    server = PaymentServer(replies=[{"success": False, "message": "This booking was recently refunded. Please wait."}])
    markers = MemoryMarkerStore()
    result = await make_reconciler(server, markers=markers).run()
    assert result.state == VerificationState.FAILED
    assert result.retry_blocked
    assert await markers.get("B1", "ORD1") == MARKER_FAILED

    again = await make_reconciler(server, markers=markers).run()
    assert again.retry_blocked
    assert server.verify_calls == 1


async def test_client_error_is_terminal(make_reconciler):
    server = PaymentServer(replies=[httpx.Response(400, json={"success": False, "message": "Order mismatch"})])
    markers = MemoryMarkerStore()
    result = await make_reconciler(server, markers=markers).run()
    assert result.state == VerificationState.FAILED
    assert result.message == "Order mismatch"
    assert result.recovery == RecoveryAction.RETRY
    assert server.verify_calls == 1
    assert await markers.get("B1", "ORD1") is None


async def test_missing_identifiers_fail_without_requests(make_reconciler):
    server = PaymentServer()
    result = await make_reconciler(server, order_id=None).run()
    assert result.state == VerificationState.FAILED
    assert server.calls == 0


def test_from_redirect_reads_processor_token():
    reconciler = PaymentReconciler.from_redirect(
        gateway=None, markers=None, params={"bookingId": "B9", "token": "ORD9", "PayerID": "X"}
    )
    assert (reconciler.booking_id, reconciler.order_id) == ("B9", "ORD9")


async def test_unauthenticated_without_token(make_reconciler):
    server = PaymentServer()
    result = await make_reconciler(server, token=None).run()
    assert result.state == VerificationState.UNAUTHENTICATED
    assert result.recovery == RecoveryAction.REAUTHENTICATE
    assert server.calls == 0


async def test_expired_session_mid_poll(make_reconciler):
    server = PaymentServer(unauthorized=True)
    reconciler = make_reconciler(server)
    result = await reconciler.run()
    assert result.state == VerificationState.UNAUTHENTICATED
    assert not reconciler.gateway.session.is_authenticated


async def test_cancel_stops_polling(make_reconciler):
    server = PaymentServer()
    markers = MemoryMarkerStore()
    reconciler = make_reconciler(server, markers=markers, poll_interval=10)

    reconciler.start()
    await server.first_verify.wait()
    reconciler.cancel()

    assert await reconciler.wait() is None
    assert reconciler.cancelled
    assert reconciler.state == VerificationState.VERIFYING
    assert reconciler.result is None
    assert server.verify_calls == 1
    assert await markers.get("B1", "ORD1") is None


async def test_context_exit_cancels(make_reconciler):
    server = PaymentServer()
    async with make_reconciler(server, poll_interval=10) as reconciler:
        await server.first_verify.wait()
    assert reconciler.cancelled
    assert server.verify_calls == 1


async def test_settlement_through_server(store, book, customer):
    booking_id, order_id = await book()
    reconciler = PaymentReconciler(customer, MemoryMarkerStore(), booking_id, order_id, poll_interval=0.005, max_attempts=400)

    task = reconciler.start()
    await asyncio.sleep(0.02)
    assert not task.done()
    store.settle(order_id)

    result = await reconciler.wait()
    assert result.state == VerificationState.SUCCESS
    assert store.get(booking_id).payment_status == PaymentStatus.PAID


async def test_refunded_booking_through_server(store, book, customer):
    booking_id, order_id = await book(paid=True)
    await store.refund(booking_id)

    result = await PaymentReconciler(customer, MemoryMarkerStore(), booking_id, order_id, poll_interval=0.001).run()
    assert result.state == VerificationState.FAILED
    assert result.retry_blocked
    assert result.attempts == 0
