"""Unit tests for the shadowsync public API surface.

Test Techniques Used:
    - Specification-based Testing: ``__all__`` contents and importability
"""

from __future__ import annotations

import shadowsync


class TestShadowsyncPublicAPI:
    """Technique: Specification-based Testing."""

    EXPECTED = {
        "__version__",
        "Document",
        "merge",
        "DeviceInfo",
        "ShadowDevice",
        "ShadowSession",
        "DEFAULT_REQUEST_TIMEOUT",
        "PendingRequest",
        "UpdateOutcome",
        "UpdateResult",
        "UpdateSerializer",
        "CorrelationRegistry",
        "Broadcast",
        "Unsubscribe",
        "AwsShadowClient",
        "MockShadowConnection",
        "NullShadowConnection",
        "ShadowConnection",
        "ShadowListener",
        "shadow_topic",
        "DeltaEvent",
        "ForeignChangeEvent",
        "Lifecycle",
        "LifecycleEvent",
        "ResponseStatus",
        "ShadowEvent",
        "ShadowState",
        "StatusEvent",
        "TimeoutEvent",
        "ConnectionUnavailableError",
        "RequestFailedError",
        "ShadowSyncError",
        "ClockPort",
        "SystemClock",
        "JsonFormatter",
        "configure_logging",
        "LifecycleCallback",
        "MessageCallback",
        "MockMqttClient",
        "MqttClient",
        "MqttLifecycle",
        "MqttMessageHandler",
        "MqttPort",
        "MAX_IOT_VALUE",
        "Product",
        "RestIot",
        "convert_from_percentage",
        "convert_to_percentage",
        "select_touch_ring_routine",
        "touch_ring_routines",
        "LoggingSettings",
        "MqttSettings",
        "Settings",
        "ShadowSettings",
    }

    def test_all_contains_expected_symbols(self) -> None:
        assert set(shadowsync.__all__) == self.EXPECTED

    def test_all_symbols_importable(self) -> None:
        for name in shadowsync.__all__:
            assert hasattr(shadowsync, name), name

    def test_version_is_string(self) -> None:
        assert isinstance(shadowsync.__version__, str)
        assert shadowsync.__version__
