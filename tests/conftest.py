from typing import Any, Optional
from unittest.mock import AsyncMock

import httpx
import pytest

from storyreel import metrics, polling, vendor_http
from storyreel.ledger import InMemoryUsageStore, UsageLedger
from storyreel.ledger.cache import LocalUsageCache
from storyreel.pipeline.base import PipelineStage
from storyreel.pipeline.storage import InMemoryArtifactStore


@pytest.fixture(autouse=True)
def isolate_globals(monkeypatch):
    """Fresh metrics, instant polling and no real network for every test."""
    metrics.reset()
    monkeypatch.setattr(polling, "POLL_INTERVAL", 0.0)
    monkeypatch.delenv("ADMIN_SHARED_SECRET", raising=False)
    yield
    vendor_http.set_transport(None)


@pytest.fixture
def usage_store():
    return InMemoryUsageStore()


@pytest.fixture
def ledger(usage_store):
    return UsageLedger(usage_store, LocalUsageCache())


@pytest.fixture
def artifact_store():
    return InMemoryArtifactStore()


@pytest.fixture
def mock_vendor():
    """Route vendor HTTP through a handler: `mock_vendor(handler)`."""

    def install(handler):
        vendor_http.set_transport(httpx.MockTransport(handler))

    return install


class FakeStage(PipelineStage):
    """Stage double whose `execute` is an AsyncMock."""

    def __init__(self, name: str, result: Any = None, side_effect: Optional[Any] = None):
        self.name = name
        self.execute = AsyncMock(return_value=result, side_effect=side_effect)

    async def execute(self, stage_input, token=None):  # replaced per instance
        raise NotImplementedError


@pytest.fixture
def fake_stage():
    return FakeStage
