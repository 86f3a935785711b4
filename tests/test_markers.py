from unittest.mock import AsyncMock

from chorebook.markers import (
    MARKER_FAILED,
    MARKER_SUCCESS,
    MemoryMarkerStore,
    RedisMarkerStore,
    make_marker_store,
    marker_key,
)


def test_marker_key_is_per_booking_and_order():
    assert marker_key("B1", "ORD1") == "payment_verification:B1:ORD1"
    assert marker_key("B1", "ORD1") != marker_key("B1", "ORD2")


async def test_memory_markers_are_write_once():
    markers = MemoryMarkerStore()
    assert await markers.get("B1", "ORD1") is None
    assert await markers.mark("B1", "ORD1", MARKER_FAILED) is True
    assert await markers.mark("B1", "ORD1", MARKER_SUCCESS) is False
    assert await markers.get("B1", "ORD1") == MARKER_FAILED


async def test_redis_markers_use_set_nx_with_ttl():
    client = AsyncMock()
    client.set.return_value = True
    client.get.return_value = MARKER_FAILED
    markers = RedisMarkerStore(client, ttl_seconds=60)

    assert await markers.mark("B1", "ORD1", MARKER_FAILED) is True
    client.set.assert_awaited_once_with("payment_verification:B1:ORD1", MARKER_FAILED, nx=True, ex=60)
    assert await markers.get("B1", "ORD1") == MARKER_FAILED


async def test_redis_marker_already_set():
    client = AsyncMock()
    client.set.return_value = None
    assert await RedisMarkerStore(client).mark("B1", "ORD1", MARKER_SUCCESS) is False


def test_no_redis_url_falls_back_to_memory():
    assert isinstance(make_marker_store(""), MemoryMarkerStore)
    assert isinstance(make_marker_store("redis://localhost:6379/0"), RedisMarkerStore)
