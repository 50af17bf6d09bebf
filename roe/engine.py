"""ROE facade: the operations exposed to the orchestration layer."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, List, Mapping, Optional, Sequence

import numpy as np

from .collective import CollectiveInsight, CollectiveLearningAggregator, SynchronicityMatch
from .config import RoeConfig, SelectionConfig, load_config
from .contracts import EmbeddingService, InstabilitySource, OutcomeStore
from .crisis import (
    CrisisCheck,
    CrisisLevel,
    CrisisMonitor,
    SafetyResource,
    get_safety_resources,
)
from .embedding import CachingEmbedder
from .errors import EmptyCandidateSetError, StoreError
from .feedback import FeedbackOutcome, record_feedback
from .records import Intervention, OutcomeRecord, utc_now
from .resonance import ResonanceCalculator, ResonanceResult, UserState
from .retry import call_with_retry
from .selection import SelectionMatrix, SelectionResult

logger = logging.getLogger(__name__)

TRIGGERING_FLAG = "potentially_triggering"


@dataclass
class ResonanceSnapshot:
    result: ResonanceResult
    outcome: Optional[OutcomeRecord]


class RoeEngine:
    """Wire the calculator, matrix, aggregator and monitor to one store."""

    def __init__(
        self,
        store: OutcomeStore,
        embedder: Optional[EmbeddingService] = None,
        *,
        instability: Optional[InstabilitySource] = None,
        config: Optional[RoeConfig] = None,
        rng: Optional[random.Random] = None,
        noise_rng: Optional[np.random.Generator] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config or load_config()
        self.store = store
        if embedder is not None and not isinstance(embedder, CachingEmbedder):
            embedder = CachingEmbedder(embedder, self.config.embedding)
        self.embedder = embedder
        self._clock = clock
        self.calculator = ResonanceCalculator(embedder, self.config.resonance, clock=clock)
        self.matrix = SelectionMatrix(self.config.selection, rng=rng)
        self.aggregator = CollectiveLearningAggregator(
            store,
            self.config.collective,
            rng=noise_rng,
            clock=clock,
            retry=self.config.store_retry,
        )
        self.monitor = CrisisMonitor(store, instability, self.config.crisis, clock=clock)

    # ------------------------------------------------------------------
    # Resonance
    # ------------------------------------------------------------------

    def calculate_resonance(
        self,
        user_id: str,
        user_state: UserState,
        target_vector: Optional[Sequence[float]] = None,
        *,
        belief_profile_id: Optional[str] = None,
        emotion_label: Optional[str] = None,
        persist: bool = True,
    ) -> ResonanceSnapshot:
        result = self.calculator.calculate(user_state, target_vector)
        outcome = None
        if persist:
            outcome = OutcomeRecord(
                user_id=user_id,
                resonance_index=result.resonance_index,
                created_at=result.timestamp,
                belief_profile_id=belief_profile_id,
                emotion_label=emotion_label,
                extras={"components": result.components.as_dict()},
            )
            self._store_call(lambda: self.store.add_outcome(outcome), "add_outcome")
        return ResonanceSnapshot(result=result, outcome=outcome)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select_intervention(
        self,
        user_id: str,
        user_state_vector: Optional[Sequence[float]],
        resonance: ResonanceResult,
        candidate_ids: Optional[Sequence[str]] = None,
        config: Optional[SelectionConfig] = None,
    ) -> SelectionResult:
        """Select one intervention and persist the fatigue bookkeeping."""
        candidates = self._candidates(candidate_ids)
        if self.recommendations_suppressed(user_id):
            kept = [c for c in candidates if not c.metadata.get(TRIGGERING_FLAG)]
            logger.info(
                "critical protocol active for %s; withheld %d triggering candidates",
                user_id,
                len(candidates) - len(kept),
            )
            candidates = kept
        if not candidates:
            raise EmptyCandidateSetError("no interventions available for selection")

        result = self.matrix.select_field(user_state_vector, resonance, candidates, config)
        decay_rate = (config or self.matrix.config).decay_rate
        for candidate in candidates:
            if candidate.id == result.selected.id:
                self._store_call(
                    lambda cid=candidate.id: self.store.update_intervention(cid, self.matrix.fatigued),
                    "update_intervention",
                )
            else:
                self._store_call(
                    lambda cid=candidate.id: self.store.update_intervention(
                        cid, lambda row: self.matrix.rested(row, decay_rate)
                    ),
                    "update_intervention",
                )
        return result

    def recommendations_suppressed(self, user_id: str) -> bool:
        # a later, milder protocol does not lift an active critical one
        cutoff = self._clock() - timedelta(hours=self.config.crisis.suppression_window_hours)
        events = self._store_call(
            lambda: self.store.events_since(user_id, "safety_protocol_activated", cutoff),
            "events_since",
        )
        return any(event.payload.get("suppress_recommendations") for event in events)

    # ------------------------------------------------------------------
    # Feedback and collective learning
    # ------------------------------------------------------------------

    def record_feedback(
        self,
        user_id: str,
        intervention_id: str,
        self_report: float,
        behavioral_metrics: Optional[Mapping[str, Any]] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> FeedbackOutcome:
        return record_feedback(
            self.store,
            user_id=user_id,
            intervention_id=intervention_id,
            self_report=self_report,
            behavioral_metrics=behavioral_metrics,
            context=context,
            clock=self._clock,
            store_call=self._store_call,
        )

    def get_collective_insights(self, user_id: str, limit: int = 5) -> List[CollectiveInsight]:
        return self.aggregator.get_collective_insights(user_id, limit)

    def update_collective_weights(self, intervention_id: Optional[str] = None) -> None:
        """Refresh one intervention, or every known one when no id is given."""
        if intervention_id is not None:
            self.aggregator.update_collective_weights(intervention_id)
            return
        for intervention in self._candidates(None):
            self.aggregator.update_collective_weights(intervention.id)

    def get_personalized_learning_rate(self, user_id: str, base_rate: float = 0.05) -> float:
        return self.aggregator.get_personalized_learning_rate(user_id, base_rate)

    def detect_synchronicities(
        self,
        user_id: str,
        window: timedelta = timedelta(days=7),
    ) -> List[SynchronicityMatch]:
        return self.aggregator.detect_synchronicities(user_id, window)

    # ------------------------------------------------------------------
    # Safety
    # ------------------------------------------------------------------

    def detect_crisis(self, user_id: str) -> Optional[CrisisLevel]:
        return self.monitor.detect_crisis(user_id)

    def check_crisis(self, user_id: str) -> CrisisCheck:
        return self.monitor.check(user_id)

    @staticmethod
    def get_safety_resources(severity: str) -> List[SafetyResource]:
        return get_safety_resources(severity)

    def generate_safety_plan(self, user_id: str) -> List[str]:
        return self.monitor.generate_safety_plan(user_id)

    def close(self) -> None:
        self.monitor.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _candidates(self, candidate_ids: Optional[Sequence[str]]) -> List[Intervention]:
        if candidate_ids is None:
            return self._store_call(self.store.list_interventions, "list_interventions")
        rows: List[Intervention] = []
        for cid in candidate_ids:
            row = self._store_call(lambda c=cid: self.store.get_intervention(c), "get_intervention")
            if row is None:
                logger.warning("unknown candidate %s ignored", cid)
                continue
            rows.append(row)
        return rows

    def _store_call(self, fn: Callable[[], Any], label: str) -> Any:
        try:
            return call_with_retry(fn, self.config.store_retry, label=f"store.{label}")
        except Exception as exc:
            raise StoreError(f"{label} failed: {exc}") from exc


__all__ = ["RoeEngine", "ResonanceSnapshot", "TRIGGERING_FLAG"]
