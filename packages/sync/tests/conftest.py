"""Pytest configuration and fixtures."""

import os
from typing import Any
from unittest.mock import AsyncMock

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "anon-key-123")

from ar_sync.models import RunConfiguration, WorkItem  # noqa: E402


def make_payments(count: int, prefix: str = "PMT") -> list[WorkItem]:
    """Build ``count`` distinct payments."""
    return [
        WorkItem(
            id=f"id-{i:04d}",
            reference_number=f"{prefix}{i:04d}",
            customer_id=f"C{i % 7:03d}",
            amount=100.0 + i,
        )
        for i in range(1, count + 1)
    ]


@pytest.fixture
def payment_factory():
    return make_payments


@pytest.fixture
def payments() -> list[WorkItem]:
    return make_payments(23)


@pytest.fixture
def fast_config() -> RunConfiguration:
    """Run configuration with no pacing delays."""
    return RunConfiguration(batch_size=10, concurrency=5, group_delay=0, batch_delay=0)


@pytest.fixture
def application_response() -> dict[str, Any]:
    """Fetch endpoint response with two applications in ERP casing."""
    return {
        "success": True,
        "applications": [
            {"RefNbr": "INV-1001", "AmountPaid": 250.0, "Balance": 0.0, "DocType": "Invoice"},
            {"RefNbr": "CM-2001", "AmountPaid": -25.5, "Balance": 10.0, "DocType": "Credit Memo"},
        ],
    }


@pytest.fixture
def mock_source(application_response):
    """Application source that succeeds for every payment."""
    source = AsyncMock()
    source.fetch_payment_applications = AsyncMock(return_value=application_response)
    return source


@pytest.fixture
def mock_httpx_client():
    """Create a mock httpx AsyncClient."""
    client = AsyncMock()
    client.request = AsyncMock()
    client.post = AsyncMock()
    client.get = AsyncMock()
    client.aclose = AsyncMock()
    return client
