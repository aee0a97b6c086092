"""Tests for Redis caching of availability listings."""

from unittest.mock import MagicMock

import pytest
from httpx import AsyncClient

from app.core.redis_client import CacheManager
from app.dependencies import get_cache_manager
from app.main import app


def test_cache_manager_get_json():
    """Test CacheManager get_json method."""
    mock_redis = MagicMock()
    cache_manager = CacheManager(redis_client=mock_redis)

    # Test cache miss
    mock_redis.get.return_value = None
    result = cache_manager.get_json("availability:doc:2024-06-01")
    assert result is None
    mock_redis.get.assert_called_once_with("availability:doc:2024-06-01")

    # Test cache hit
    mock_redis.reset_mock()
    mock_redis.get.return_value = '[{"start_time": "09:00:00", "end_time": "09:30:00"}]'
    result = cache_manager.get_json("availability:doc:2024-06-01")
    assert result == [{"start_time": "09:00:00", "end_time": "09:30:00"}]


def test_cache_manager_get_json_survives_redis_errors():
    mock_redis = MagicMock()
    mock_redis.get.side_effect = ConnectionError("redis down")
    cache_manager = CacheManager(redis_client=mock_redis)

    assert cache_manager.get_json("availability:doc:2024-06-01") is None


def test_cache_manager_set_json():
    """Test CacheManager set_json method."""
    mock_redis = MagicMock()
    cache_manager = CacheManager(redis_client=mock_redis)

    test_data = [{"start_time": "09:00:00", "end_time": "09:30:00", "is_booked": False}]

    # Test without TTL
    result = cache_manager.set_json("key", test_data)
    assert result is True
    mock_redis.set.assert_called_once()

    # Test with TTL
    mock_redis.reset_mock()
    result = cache_manager.set_json("key", test_data, ttl=300)
    assert result is True
    mock_redis.setex.assert_called_once()
    assert mock_redis.setex.call_args.args[1] == 300


def test_cache_manager_set_json_failure():
    mock_redis = MagicMock()
    mock_redis.set.side_effect = ConnectionError("redis down")
    cache_manager = CacheManager(redis_client=mock_redis)

    assert cache_manager.set_json("key", {"a": 1}) is False


def test_cache_manager_delete():
    """Test CacheManager delete method."""
    mock_redis = MagicMock()
    cache_manager = CacheManager(redis_client=mock_redis)

    result = cache_manager.delete("availability:doc:2024-06-01")
    assert result is True
    mock_redis.delete.assert_called_once_with("availability:doc:2024-06-01")


@pytest.mark.asyncio
async def test_booking_invalidates_cached_availability(
    client: AsyncClient,
    doctor: dict,
    patient_headers: dict,
) -> None:
    """A successful booking drops the cached listing of that doctor's day."""
    mock_redis = MagicMock()
    mock_redis.get.return_value = None
    app.dependency_overrides[get_cache_manager] = lambda: CacheManager(redis_client=mock_redis)

    response = await client.post(
        "/api/v1/appointments/",
        json={
            "doctor_id": str(doctor["id"]),
            "appointment_date": "2024-06-01",
            "start_time": "09:00:00",
            "end_time": "09:30:00",
            "reason": "Checkup",
        },
        headers=patient_headers,
    )

    assert response.status_code == 201
    mock_redis.delete.assert_called_once_with(f"availability:{doctor['id']}:2024-06-01")


@pytest.mark.asyncio
async def test_open_slots_served_from_cache(client: AsyncClient, doctor: dict) -> None:
    mock_redis = MagicMock()
    mock_redis.get.return_value = (
        '[{"start_time": "09:00:00", "end_time": "09:30:00", "is_booked": false},'
        ' {"start_time": "09:30:00", "end_time": "10:00:00", "is_booked": true}]'
    )
    app.dependency_overrides[get_cache_manager] = lambda: CacheManager(redis_client=mock_redis)

    response = await client.get(f"/api/v1/appointments/slots/{doctor['id']}/2024-06-01")

    assert response.status_code == 200
    assert response.json()["slots"] == [
        {"start_time": "09:00:00", "end_time": "09:30:00", "is_booked": False}
    ]
    mock_redis.setex.assert_not_called()
