from __future__ import annotations

import time
from datetime import timedelta

import pytest

from roe.config import CrisisConfig, RetryPolicy
from roe.crisis import (
    SAFETY_PLAN_STEPS,
    CrisisLevel,
    CrisisMonitor,
    CrisisSignals,
    calculate_confidence,
    calculate_severity,
    determine_safety_protocol,
    get_safety_resources,
)
from roe.store import InMemoryStore
from tests.helpers import NOW, add_history

FAST = CrisisConfig(retry=RetryPolicy(attempts=1, base_delay_s=0.0, max_delay_s=0.0))


class _Entropy:
    def __init__(self, value):
        self.value = value

    def overall_entropy(self, user_id):
        return self.value


class _BrokenStore(InMemoryStore):
    def recent_outcomes(self, user_id, limit):
        raise ConnectionError("database offline")


class _SlowStore(InMemoryStore):
    def recent_outcomes(self, user_id, limit):
        time.sleep(0.5)
        return []


@pytest.fixture
def monitor(store, clock):
    mon = CrisisMonitor(store, config=FAST, clock=clock)
    yield mon
    mon.close()


def _level(severity: str) -> CrisisLevel:
    return CrisisLevel(severity=severity, confidence=0.8, signals=CrisisSignals(), triggered_at=NOW)


def test_plunge_after_prolonged_lows_is_high(store, monitor) -> None:
    add_history(store, "u", [0.2] * 6 + [0.6, 0.2])

    level = monitor.detect_crisis("u")

    assert level is not None
    assert level.severity == "high"
    assert level.confidence == pytest.approx(0.75)
    assert level.signals.triggered() == ["ri_plunge", "prolonged_low_ri"]
    assert level.triggered_at == NOW


def test_crisis_writes_audit_events(store, monitor) -> None:
    add_history(store, "u", [0.2] * 6 + [0.6, 0.2])
    monitor.check("u")

    detected = store.events("crisis.detected")
    assert len(detected) == 1
    assert detected[0].payload["severity"] == "high"
    activated = store.latest_event("u", "safety_protocol_activated")
    assert activated is not None
    assert activated.payload["notify_guardian"] is True
    assert activated.payload["suppress_recommendations"] is False


def test_single_point_is_insufficient(store, monitor) -> None:
    add_history(store, "u", [0.1])
    assert monitor.check("u").status == "insufficient"
    assert monitor.detect_crisis("u") is None
    assert store.events() == []


def test_stable_history_is_clear(store, monitor) -> None:
    add_history(store, "u", [0.6, 0.65, 0.62])
    assert monitor.check("u").status == "clear"


def test_entropy_spike_alone_is_low(store, clock) -> None:
    add_history(store, "u", [0.6, 0.6])
    mon = CrisisMonitor(store, _Entropy(0.9), FAST, clock=clock)
    try:
        level = mon.detect_crisis("u")
    finally:
        mon.close()
    assert level is not None
    assert level.severity == "low"
    assert level.signals.triggered() == ["entropy_spike"]


def test_isolation_detected_from_stale_history(store, monitor) -> None:
    add_history(store, "u", [0.6, 0.6], end=NOW - timedelta(days=10))
    signals = monitor.analyze_signals("u")
    assert signals.isolation_pattern
    assert not signals.prolonged_low_ri


def test_store_failure_is_unknown_not_clear(clock) -> None:
    mon = CrisisMonitor(_BrokenStore(), config=FAST, clock=clock)
    try:
        check = mon.check("u")
        assert check.status == "unknown"
        assert "offline" in check.error
        assert mon.detect_crisis("u") is None
    finally:
        mon.close()


def test_timeout_is_unknown(clock) -> None:
    mon = CrisisMonitor(_SlowStore(), config=CrisisConfig(timeout_s=0.05), clock=clock)
    try:
        check = mon.check("u")
    finally:
        mon.close()
    assert check.status == "unknown"
    assert check.error == "timeout"


def test_severity_and_confidence_scoring() -> None:
    everything = CrisisSignals(True, True, True, True, True)
    assert calculate_severity(everything) == "critical"
    assert calculate_severity(CrisisSignals(ri_plunge=True)) == "moderate"
    assert calculate_severity(CrisisSignals(isolation_pattern=True)) == "low"
    assert calculate_confidence(CrisisSignals()) == 0.0
    assert calculate_confidence(CrisisSignals(isolation_pattern=True, entropy_spike=True)) == pytest.approx(0.55)


def test_protocol_table() -> None:
    critical = determine_safety_protocol(_level("critical"))
    assert critical.notify_guardian and critical.suppress_recommendations
    assert critical.resources[0].contact == "911"
    assert "Disable potentially triggering content" in critical.actions

    high = determine_safety_protocol(_level("high"))
    assert high.notify_guardian and not high.suppress_recommendations
    assert high.resources[0].name == "Emergency Services"

    moderate = determine_safety_protocol(_level("moderate"))
    assert not moderate.notify_guardian
    assert all(r.name != "Emergency Services" for r in moderate.resources)

    low = determine_safety_protocol(_level("low"))
    assert not low.notify_guardian
    assert [r.contact for r in low.resources] == ["988", "Text HOME to 741741", "1-800-950-6264"]


def test_resources_always_include_lifeline() -> None:
    for severity in ("low", "moderate", "high", "critical"):
        assert any(r.contact == "988" for r in get_safety_resources(severity))


def test_safety_plan_personalisation(store, monitor) -> None:
    assert monitor.generate_safety_plan("nobody") == list(SAFETY_PLAN_STEPS)

    add_history(store, "u", [0.3], emotion="anxious")
    plan = monitor.generate_safety_plan("u")
    assert len(plan) == len(SAFETY_PLAN_STEPS) + 2
    assert plan[0] == SAFETY_PLAN_STEPS[0]
    assert plan[1].startswith("Return to previously helpful practices")
    assert plan[2].startswith("Practice 5-4-3-2-1 grounding")


def test_safety_plan_survives_store_failure(clock) -> None:
    mon = CrisisMonitor(_BrokenStore(), config=FAST, clock=clock)
    try:
        assert mon.generate_safety_plan("u") == list(SAFETY_PLAN_STEPS)
    finally:
        mon.close()
