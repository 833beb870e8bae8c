"""Shared test fixtures and configuration."""

import os
from datetime import datetime, timedelta, timezone

import pytest

# Never reach for a real PostgreSQL during tests
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CACHE_SWEEP_INTERVAL_SECONDS", "0")

from imagery_cache.config import Settings  # noqa: E402
from imagery_cache.database import create_engine, create_session_factory, init_db  # noqa: E402
from imagery_cache.services.store import CacheStore  # noqa: E402

AOI = "POLYGON((-97.72 30.28,-97.72 30.29,-97.71 30.29,-97.71 30.28,-97.72 30.28))"


class FakeClock:
    """Controllable replacement for utcnow()."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}",
        cache_sweep_interval_seconds=0,
        admin_token="",
    )


@pytest.fixture
async def engine(test_settings):
    engine = create_engine(test_settings)
    assert await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def bare_engine(tmp_path):
    """Engine whose database has no tables — every query fails."""
    engine = create_engine(Settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}"))
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def store(session_factory, test_settings, clock):
    store = CacheStore(session_factory, test_settings, clock=clock)
    await store.start()
    yield store
    await store.close()


@pytest.fixture
def archive_params():
    return {
        "aoi": AOI,
        "fromDate": "2025-01-01T00:00:00Z",
        "toDate": "2025-01-31T23:59:59Z",
        "maxCloudCoveragePercent": 20,
        "productTypes": ["SAR", "DAY"],
        "resolutions": ["HIGH", "MEDIUM"],
    }


@pytest.fixture
def archive_response():
    """Archive search response with two results."""
    return {
        "request": {"aoi": AOI},
        "archives": [
            {
                "archiveId": "arch-001",
                "provider": "PLANET",
                "productType": "DAY",
                "resolution": "HIGH",
                "captureTimestamp": "2025-01-10T16:20:00Z",
                "cloudCoveragePercent": 5,
            },
            {
                "archiveId": "arch-002",
                "provider": "UMBRA",
                "productType": "SAR",
                "resolution": "MEDIUM",
                "captureTimestamp": "2025-01-12T09:05:00Z",
                "cloudCoveragePercent": 0,
            },
        ],
        "total": 2,
    }


@pytest.fixture
def feasibility_params():
    return {
        "aoi": AOI,
        "productType": "DAY",
        "resolution": "HIGH",
        "startDate": "2025-02-01T00:00:00Z",
        "endDate": "2025-02-15T00:00:00Z",
        "maxCloudCoveragePercent": 30,
        "requiredProvider": "PLANET",
    }


@pytest.fixture
def feasibility_response():
    return {
        "id": "3f2c1d9e-0000-4000-8000-000000000001",
        "validUntil": "2025-02-15T00:00:00Z",
        "overallScore": {
            "feasibility": 0.82,
            "providerScore": {
                "providerScores": [
                    {
                        "provider": "PLANET",
                        "score": 0.82,
                        "opportunities": [
                            {
                                "windowStart": "2025-02-03T10:00:00Z",
                                "windowEnd": "2025-02-03T10:05:00Z",
                                "providerWindowId": "pw-1",
                            },
                        ],
                    },
                ],
            },
        },
    }


@pytest.fixture
def pass_prediction_params():
    return {
        "aoi": AOI,
        "fromDate": "2025-02-01T00:00:00Z",
        "toDate": "2025-02-08T00:00:00Z",
        "productTypes": ["SAR", "DAY"],
        "maxOffNadirAngle": 30,
    }


@pytest.fixture
def pass_prediction_response():
    return {
        "passes": [
            {"provider": "UMBRA", "satname": "UMBRA-04", "passDate": "2025-02-02T04:11:00Z"},
            {"provider": "PLANET", "satname": "SKYSAT-C12", "passDate": "2025-02-03T10:02:00Z"},
            {"provider": "PLANET", "satname": "SKYSAT-C7", "passDate": "2025-02-05T10:30:00Z"},
        ],
    }


@pytest.fixture
def archive_order():
    return {
        "id": "item-123",
        "orderId": "order-archive-1",
        "orderType": "ARCHIVE",
        "orderCost": 10000,
        "ownerId": "user-456",
        "status": "PROCESSING_PENDING",
        "aoi": AOI,
        "aoiSqkm": 25.0,
        "deliveryDriver": "S3",
        "deliveryParams": {"bucket": "imagery-deliveries"},
        "label": "Austin downtown",
        "orderCode": "ORD-0001",
        "createdAt": "2025-01-10T08:00:00Z",
        "archiveId": "arch-001",
        "archive": {"archiveId": "arch-001", "productType": "DAY", "resolution": "HIGH"},
    }


@pytest.fixture
def tasking_order():
    return {
        "id": "item-789",
        "orderId": "order-tasking-1",
        "orderType": "TASKING",
        "orderCost": 250000,
        "ownerId": "user-456",
        "status": "PROVIDER_PENDING",
        "aoi": AOI,
        "aoiSqkm": 25.0,
        "deliveryDriver": "GS",
        "deliveryParams": {"bucket": "tasking-bucket"},
        "orderLabel": "Port survey",
        "orderCode": "ORD-0002",
        "createdAt": "2025-01-12T08:00:00Z",
        "windowStart": "2025-02-01T00:00:00Z",
        "windowEnd": "2025-02-15T00:00:00Z",
        "productType": "SAR",
        "resolution": "VERY HIGH",
    }
