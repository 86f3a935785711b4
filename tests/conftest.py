from datetime import date, datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from chorebook.booking_form import BookingForm
from chorebook.gateway import Gateway
from chorebook.server.main import create_app
from chorebook.server.security import ROLE_PROVIDER, ROLE_USER, issue_token
from chorebook.server.store import BookingStore
from chorebook.session import SessionContext

BASE_URL = "http://testserver"


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return Clock(datetime.now(timezone.utc))


@pytest.fixture
def store(clock):
    s = BookingStore(clock=clock)
    s.add_service("svc-clean", "Deep Clean", 20.0)
    return s


@pytest.fixture
def app(store):
    return create_app(store)


@pytest.fixture
async def gateways(app):
    opened = []

    def make(sub: str, role: str = ROLE_USER) -> Gateway:
        session = SessionContext(
            token=issue_token(sub, role),
            refresh_token=issue_token(sub, role, kind="refresh"),
            user_email=sub,
        )
        gw = Gateway(session, base_url=BASE_URL, transport=httpx.ASGITransport(app=app))
        opened.append(gw)
        return gw

    yield make

    for gw in opened:
        await gw.aclose()


@pytest.fixture
def customer(gateways):
    return gateways("alice@example.com", ROLE_USER)


@pytest.fixture
def provider_a(gateways):
    return gateways("provider-a", ROLE_PROVIDER)


@pytest.fixture
def provider_c(gateways):
    return gateways("provider-c", ROLE_PROVIDER)


def filled_form(today: date | None = None) -> BookingForm:
    today = today or date.today()
    form = BookingForm()
    form.booking_date = today + timedelta(days=1)
    form.start_time = "10:00"
    form.end_time = "12:30"
    form.customer_name = "Alice Smith"
    form.customer_email = "alice@example.com"
    form.customer_phone = "+44 7700 900123"
    form.address = "1 High Street"
    form.city = "London"
    form.postal_code = "SW1A 1AA"
    return form


def order_id_from(approval_link: str) -> str:
    return parse_qs(urlparse(approval_link).query)["token"][0]


@pytest.fixture
def book(store, customer):
    """Create a booking through the form; returns (booking_id, order_id)."""

    async def _book(paid: bool = False):
        form = filled_form()
        form.next()
        form.next()
        created = await form.submit(customer, store.services["svc-clean"])
        order_id = order_id_from(created.approval_link)
        if paid:
            store.settle(order_id)
            await store.verify("alice@example.com", created.booking_id, order_id)
        return created.booking_id, order_id

    return _book
