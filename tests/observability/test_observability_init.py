"""Tests for initialize_observability()."""

from unittest.mock import patch

import pytest

from observ_core.observability import OTelObservationMirror, initialize_observability
from observ_core.observability import _initialization
from observ_core.settings import Settings


@pytest.fixture(autouse=True)
def reset_laminar(monkeypatch):
    monkeypatch.setattr(_initialization, "_laminar_initialized", False)


class TestInitializeObservability:
    def test_nothing_configured(self, recorder):
        config = Settings(lmnr_project_api_key="", otel_mirror_enabled=False)
        with patch("observ_core.observability._initialization.Laminar") as laminar:
            assert initialize_observability(recorder, config) is None
        laminar.initialize.assert_not_called()

    def test_mirror_only(self, recorder):
        config = Settings(lmnr_project_api_key="", otel_mirror_enabled=True)
        mirror = initialize_observability(recorder, config)
        assert isinstance(mirror, OTelObservationMirror)

    def test_laminar_key_enables_laminar_and_mirror(self, recorder):
        config = Settings(lmnr_project_api_key="lmnr-key", otel_mirror_enabled=False)
        with patch("observ_core.observability._initialization.Laminar") as laminar:
            mirror = initialize_observability(recorder, config)
            initialize_observability(recorder, config)
        assert isinstance(mirror, OTelObservationMirror)
        laminar.initialize.assert_called_once()
        assert laminar.initialize.call_args.kwargs["project_api_key"] == "lmnr-key"

    def test_laminar_failure_is_logged_not_raised(self, recorder):
        config = Settings(lmnr_project_api_key="lmnr-key", otel_mirror_enabled=False)
        with patch("observ_core.observability._initialization.Laminar") as laminar:
            laminar.initialize.side_effect = RuntimeError("network down")
            assert initialize_observability(recorder, config) is None
        assert _initialization._laminar_initialized is False
