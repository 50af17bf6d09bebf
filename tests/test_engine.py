from __future__ import annotations

import random

import numpy as np
import pytest

from roe.config import RetryPolicy, RoeConfig, SelectionConfig
from roe.embedding import CachingEmbedder
from roe.engine import TRIGGERING_FLAG, RoeEngine
from roe.errors import EmptyCandidateSetError, StoreError
from roe.records import EventRecord
from roe.resonance import UserState
from roe.store import InMemoryStore
from tests.helpers import NOW, add_feedback, add_history, make_intervention

CONFIG = RoeConfig(selection=SelectionConfig(diversity_sampling=False))


class _Entropy:
    def __init__(self, value: float = 0.9) -> None:
        self.value = value

    def overall_entropy(self, user_id):
        return self.value


@pytest.fixture
def engine(store, embedder, clock):
    eng = RoeEngine(
        store,
        embedder,
        config=CONFIG,
        rng=random.Random(0),
        noise_rng=np.random.default_rng(0),
        clock=clock,
    )
    yield eng
    eng.close()


def test_backend_is_wrapped_in_cache(engine) -> None:
    assert isinstance(engine.embedder, CachingEmbedder)


def test_calculate_resonance_persists_outcome(engine, store) -> None:
    state = UserState(emotion_frequency=0.5, belief_vector=[1.0, 0.0])
    snapshot = engine.calculate_resonance(
        "u", state, [1.0, 0.0], belief_profile_id="p", emotion_label="calm"
    )
    assert snapshot.result.resonance_index == pytest.approx(0.4 + 0.15 + 0.18)
    rows = store.recent_outcomes("u", 5)
    assert len(rows) == 1
    assert rows[0].id == snapshot.outcome.id
    assert rows[0].belief_profile_id == "p"
    assert rows[0].created_at == NOW
    assert rows[0].extras["components"]["belief_coherence"] == pytest.approx(1.0)

    transient = engine.calculate_resonance("u", state, persist=False)
    assert transient.outcome is None
    assert len(store.recent_outcomes("u", 5)) == 1


def test_selection_updates_fatigue(engine, store) -> None:
    store.save_intervention(make_intervention("strong", pattern_vector=(1.0, 0.0), learning_weight=0.8))
    store.save_intervention(make_intervention("weak", pattern_vector=(0.0, 1.0), fatigue_score=2.0))
    resonance = engine.calculate_resonance("u", UserState(), persist=False).result

    result = engine.select_intervention("u", [1.0, 0.0], resonance)

    assert result.selected.id == "strong"
    assert store.get_intervention("strong").fatigue_score == pytest.approx(1.0)
    assert store.get_intervention("weak").fatigue_score == pytest.approx(1.9)
    assert store.get_intervention("strong").learning_weight == 0.8


def test_candidate_ids_filter_and_skip_unknown(engine, store) -> None:
    store.save_intervention(make_intervention("a"))
    store.save_intervention(make_intervention("b", learning_weight=0.9))
    resonance = engine.calculate_resonance("u", UserState(), persist=False).result
    assert engine.select_intervention("u", None, resonance, ["a", "ghost"]).selected.id == "a"
    with pytest.raises(EmptyCandidateSetError):
        engine.select_intervention("u", None, resonance, ["ghost"])


def test_suppression_window_filters_triggering_candidates(engine, store, clock) -> None:
    store.save_intervention(make_intervention("intense", learning_weight=1.0, metadata={TRIGGERING_FLAG: True}))
    store.save_intervention(make_intervention("gentle", learning_weight=0.1))
    store.log_event(
        EventRecord("safety_protocol_activated", user_id="u", payload={"suppress_recommendations": True}, created_at=NOW)
    )
    resonance = engine.calculate_resonance("u", UserState(), persist=False).result

    assert engine.recommendations_suppressed("u")
    assert engine.select_intervention("u", None, resonance).selected.id == "gentle"
    with pytest.raises(EmptyCandidateSetError):
        engine.select_intervention("u", None, resonance, ["intense"])
    assert not engine.recommendations_suppressed("someone-else")

    clock.advance(hours=25)
    assert not engine.recommendations_suppressed("u")
    assert engine.select_intervention("u", None, resonance).selected.id == "intense"


def test_critical_crisis_activates_suppression(store, clock) -> None:
    eng = RoeEngine(store, instability=_Entropy(), config=CONFIG, clock=clock)
    try:
        add_history(store, "u", [0.2] * 6 + [0.6, 0.2])
        level = eng.detect_crisis("u")
        assert level is not None and level.severity == "critical"
        assert eng.recommendations_suppressed("u")
        assert eng.check_crisis("other").status == "insufficient"
    finally:
        eng.close()


def test_milder_protocol_does_not_lift_critical_suppression(store, clock) -> None:
    entropy = _Entropy(0.9)
    eng = RoeEngine(store, instability=entropy, config=CONFIG, clock=clock)
    try:
        store.save_intervention(make_intervention("intense", learning_weight=1.0, metadata={TRIGGERING_FLAG: True}))
        store.save_intervention(make_intervention("gentle", learning_weight=0.1))
        add_history(store, "u", [0.2] * 6 + [0.6, 0.2])
        assert eng.detect_crisis("u").severity == "critical"

        clock.advance(minutes=30)
        entropy.value = 0.1
        assert eng.detect_crisis("u").severity == "high"
        latest = store.latest_event("u", "safety_protocol_activated")
        assert latest.payload["suppress_recommendations"] is False

        assert eng.recommendations_suppressed("u")
        resonance = eng.calculate_resonance("u", UserState(), persist=False).result
        assert eng.select_intervention("u", None, resonance).selected.id == "gentle"

        clock.advance(hours=24)
        assert not eng.recommendations_suppressed("u")
    finally:
        eng.close()

def test_feedback_then_collective_update(engine, store) -> None:
    store.save_intervention(make_intervention("walk", learning_weight=0.5))
    store.save_intervention(make_intervention("idle", learning_weight=0.5))
    outcome = engine.record_feedback("u0", "walk", 0.5)
    assert outcome.vfs_score == pytest.approx(0.3)
    assert store.get_intervention("walk").learning_weight == 0.5

    add_feedback(store, "walk", {f"u{i}": [0.8] for i in range(1, 6)})
    engine.update_collective_weights()
    assert store.get_intervention("walk").learning_weight > 0.5
    assert store.get_intervention("idle").learning_weight == 0.5


def test_passthrough_operations(engine) -> None:
    assert engine.get_personalized_learning_rate("nobody") == 0.05
    assert engine.get_collective_insights("nobody") == []
    assert engine.detect_synchronicities("nobody") == []
    assert engine.get_safety_resources("high")[0].contact == "911"
    assert len(engine.generate_safety_plan("nobody")) == 6


class _BrokenStore(InMemoryStore):
    def add_outcome(self, record):
        raise ConnectionError("disk full")


def test_store_failures_raise_store_error(clock) -> None:
    config = RoeConfig(
        selection=SelectionConfig(diversity_sampling=False),
        store_retry=RetryPolicy(attempts=1, base_delay_s=0.0, max_delay_s=0.0),
    )
    eng = RoeEngine(_BrokenStore(), config=config, clock=clock)
    try:
        with pytest.raises(StoreError):
            eng.calculate_resonance("u", UserState())
    finally:
        eng.close()


class _FlakyFeedbackStore(InMemoryStore):
    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def append_feedback(self, record):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("disk full")
        super().append_feedback(record)


def _feedback_engine(store, clock) -> RoeEngine:
    config = RoeConfig(store_retry=RetryPolicy(attempts=2, base_delay_s=0.0, max_delay_s=0.0))
    return RoeEngine(store, config=config, clock=clock)


def test_feedback_store_failures_are_retried(clock) -> None:
    store = _FlakyFeedbackStore(failures=1)
    store.save_intervention(make_intervention("walk"))
    eng = _feedback_engine(store, clock)
    try:
        eng.record_feedback("u1", "walk", 0.5)
    finally:
        eng.close()
    assert store.attempts == 2
    assert len(store.feedback_since(NOW)) == 1


def test_feedback_store_failures_raise_store_error(clock) -> None:
    store = _FlakyFeedbackStore(failures=5)
    store.save_intervention(make_intervention("walk"))
    eng = _feedback_engine(store, clock)
    try:
        with pytest.raises(StoreError):
            eng.record_feedback("u1", "walk", 0.5)
    finally:
        eng.close()
    assert store.attempts == 2
