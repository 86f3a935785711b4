from fastapi import APIRouter, Depends, HTTPException, Request

from ..payouts import EARNINGS_PERIODS
from ..schemas import CreateBookingRequest
from .schemas import AvailabilityRequest, BookingIdRequest, RejectBookingRequest, VerifyPaymentRequest
from .security import ROLE_PROVIDER, ROLE_USER, get_current_user, get_refresh_claims, issue_token, require_role
from .store import BookingStore

router = APIRouter()


def get_store(request: Request) -> BookingStore:
    return request.app.state.store


# ================= AUTH =================

@router.post("/auth/refresh-token", tags=["Auth"])
async def refresh_token(claims=Depends(get_refresh_claims)):
    return {"success": True, "token": issue_token(claims["sub"], claims["role"])}


# ================= CUSTOMER =================

@router.post("/booking/create", tags=["Bookings"])
async def create_booking(
    data: CreateBookingRequest,
    user=Depends(get_current_user),
    store: BookingStore = Depends(get_store),
):
    customer = require_role(user, ROLE_USER)
    booking, order_id, approval_link = await store.create(customer, data)
    return {
        "success": True,
        "data": {
            "bookingId": booking.booking_id,
            "paymentOrder": {"orderId": order_id, "approvalLink": approval_link},
        },
    }


@router.get("/booking/user", tags=["Bookings"])
async def customer_bookings(user=Depends(get_current_user), store: BookingStore = Depends(get_store)):
    customer = require_role(user, ROLE_USER)
    return {"success": True, "data": [b.to_api() for b in store.list_for_customer(customer)]}


@router.post("/booking/provider/bookings/confirm", tags=["Completion"])
async def confirm_completion(
    data: BookingIdRequest,
    user=Depends(get_current_user),
    store: BookingStore = Depends(get_store),
):
    customer = require_role(user, ROLE_USER)
    await store.confirm(customer, data.booking_id)
    return {"success": True}


# ================= PROVIDER =================

@router.get("/booking/provider/assigned", tags=["Assignment"])
async def assigned_bookings(
    page: int = 1,
    user=Depends(get_current_user),
    store: BookingStore = Depends(get_store),
):
    provider = require_role(user, ROLE_PROVIDER)
    bookings, pagination = store.list_assigned(provider, page)
    return {"success": True, "data": [b.to_api() for b in bookings], "pagination": pagination}


@router.get("/booking/provider/bookings/paid", tags=["Assignment"])
async def paid_bookings(user=Depends(get_current_user), store: BookingStore = Depends(get_store)):
    provider = require_role(user, ROLE_PROVIDER)
    bookings = store.list_paid(provider)
    return {
        "success": True,
        "data": [b.to_api() for b in bookings],
        "pagination": {"currentPage": 1, "totalPages": 1, "totalBookings": len(bookings)},
    }


@router.post("/booking/provider/bookings/availability", tags=["Assignment"])
async def toggle_availability(
    data: AvailabilityRequest,
    user=Depends(get_current_user),
    store: BookingStore = Depends(get_store),
):
    provider = require_role(user, ROLE_PROVIDER)
    await store.set_availability(provider, data.booking_id, data.is_available)
    return {"success": True}


@router.post("/booking/provider/bookings/accept-booking", tags=["Assignment"])
async def accept_booking(
    data: BookingIdRequest,
    user=Depends(get_current_user),
    store: BookingStore = Depends(get_store),
):
    provider = require_role(user, ROLE_PROVIDER)
    await store.accept(provider, data.booking_id)
    return {"success": True}


@router.post("/booking/provider/bookings/reject-booking", tags=["Assignment"])
async def reject_booking(
    data: RejectBookingRequest,
    user=Depends(get_current_user),
    store: BookingStore = Depends(get_store),
):
    provider = require_role(user, ROLE_PROVIDER)
    await store.reject(provider, data.booking_id, data.rejection_reason)
    return {"success": True}


@router.post("/booking/provider/bookings/complete", tags=["Completion"])
async def complete_booking(
    data: BookingIdRequest,
    user=Depends(get_current_user),
    store: BookingStore = Depends(get_store),
):
    provider = require_role(user, ROLE_PROVIDER)
    await store.complete(provider, data.booking_id)
    return {"success": True}


@router.get("/payments/provider-earnings", tags=["Payments"])
async def provider_earnings(
    period: str = "month",
    user=Depends(get_current_user),
    store: BookingStore = Depends(get_store),
):
    provider = require_role(user, ROLE_PROVIDER)
    if period not in EARNINGS_PERIODS:
        raise HTTPException(status_code=400, detail=f"Unknown period: {period}")
    return {"success": True, "data": store.earnings(provider, period).to_api()}


# ================= PAYMENTS =================

@router.get("/payment/status/{booking_id}", tags=["Payments"])
async def payment_status(
    booking_id: str,
    user=Depends(get_current_user),
    store: BookingStore = Depends(get_store),
):
    customer = require_role(user, ROLE_USER)
    return {"success": True, "data": store.payment_snapshot(customer, booking_id)}


@router.post("/payments/verify-paypal", tags=["Payments"])
async def verify_paypal(
    data: VerifyPaymentRequest,
    user=Depends(get_current_user),
    store: BookingStore = Depends(get_store),
):
    customer = require_role(user, ROLE_USER)
    return await store.verify(customer, data.booking_id, data.order_id)
