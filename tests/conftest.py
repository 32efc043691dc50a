"""Shared fixtures: a fresh in-memory store and recorder per test."""

from collections.abc import Iterator
from decimal import Decimal

import pytest

from observ_core.models import Session
from observ_core.observability import TelemetryRecorder, set_recorder
from observ_core.pricing import ModelPricing, StaticPricingTable
from observ_core.store import MemoryTelemetryStore, set_telemetry_store
from tests.support.fakes import FakeChat


@pytest.fixture
def store() -> MemoryTelemetryStore:
    return MemoryTelemetryStore()


@pytest.fixture
def recorder(store: MemoryTelemetryStore) -> Iterator[TelemetryRecorder]:
    """Recorder over the test store, installed as the process-global recorder."""
    recorder = TelemetryRecorder(store)
    set_telemetry_store(store)
    set_recorder(recorder)
    try:
        yield recorder
    finally:
        set_recorder(None)
        set_telemetry_store(None)


@pytest.fixture
def session(recorder: TelemetryRecorder) -> Session:
    return recorder.start_session(user_id="user-1", external_id="conv-1", metadata={"channel": "web"})


@pytest.fixture
def pricing() -> StaticPricingTable:
    """Round prices: 0.001 per input token, 0.002 per output token."""
    return StaticPricingTable(
        {
            "test-model": ModelPricing(input_per_million=Decimal("1000"), output_per_million=Decimal("2000")),
        }
    )


@pytest.fixture
def chat() -> FakeChat:
    return FakeChat()
