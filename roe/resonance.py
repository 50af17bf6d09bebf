# -*- coding: utf-8 -*-
"""Resonance Index (RI) computation.

RI is a weighted blend of three sub-signals, each kept in [0, 1]:

- belief coherence: cosine similarity between the user's belief vector and a
  target value vector (0.7 when no target is supplied),
- emotion stability: ``1 - stddev`` over the trailing emotion window,
- value alignment: mean similarity between the intention vector and the
  embeddings of recent outputs (0.6 when nothing can be measured).

Every missing input degrades to its documented default; ``calculate`` never
raises for degraded input.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from .config import ResonanceConfig, ResonanceWeights
from .contracts import EmbeddingService
from .errors import DimensionMismatchError
from .records import utc_now
from .similarity import clamp, cosine_similarity

logger = logging.getLogger(__name__)

REGULATION_SCALE: Dict[str, float] = {"high": 0.8, "medium": 0.5, "low": 0.2}


@dataclass
class UserState:
    """Per-request view of a user; never persisted as one object."""

    emotion_frequency: float = 0.5
    belief_vector: Optional[Sequence[float]] = None
    emotion_history: Sequence[float] = field(default_factory=list)
    intention_vector: Optional[Sequence[float]] = None
    recent_outputs: Sequence[str] = field(default_factory=list)


@dataclass(frozen=True)
class ResonanceComponents:
    belief_coherence: float
    emotion_stability: float
    value_alignment: float

    def as_dict(self) -> Dict[str, float]:
        return {
            "belief_coherence": self.belief_coherence,
            "emotion_stability": self.emotion_stability,
            "value_alignment": self.value_alignment,
        }


@dataclass(frozen=True)
class ResonanceResult:
    resonance_index: float
    components: ResonanceComponents
    timestamp: datetime


def aggregate(components: ResonanceComponents, weights: ResonanceWeights) -> float:
    total = (
        components.belief_coherence * weights.belief
        + components.emotion_stability * weights.emotion
        + components.value_alignment * weights.value
    )
    return clamp(total)


class ResonanceCalculator:
    """Compute :class:`ResonanceResult` for one user at one moment."""

    def __init__(
        self,
        embedder: Optional[EmbeddingService] = None,
        config: Optional[ResonanceConfig] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.embedder = embedder
        self.config = config or ResonanceConfig()
        self._clock = clock

    def calculate(
        self,
        user_state: UserState,
        target_vector: Optional[Sequence[float]] = None,
        *,
        weights: Optional[ResonanceWeights] = None,
    ) -> ResonanceResult:
        components = ResonanceComponents(
            belief_coherence=self.belief_coherence(user_state.belief_vector, target_vector),
            emotion_stability=self.emotion_stability(
                user_state.emotion_history, user_state.emotion_frequency
            ),
            value_alignment=self.value_alignment(
                user_state.intention_vector, user_state.recent_outputs
            ),
        )
        ri = aggregate(components, weights or self.config.weights)
        logger.debug("RI=%.3f components=%s", ri, components.as_dict())
        return ResonanceResult(resonance_index=ri, components=components, timestamp=self._clock())

    def create_initial(
        self,
        profile_labels: Sequence[str],
        emotion_frequency: float,
        regulation_level: str,
    ) -> ResonanceResult:
        """Bootstrap an RI from onboarding answers."""
        belief: Optional[List[float]] = None
        text = ", ".join(str(label) for label in profile_labels)
        if text and self.embedder is not None:
            try:
                belief = list(self.embedder.embed(text))
            except Exception as exc:
                logger.warning("initial belief embedding failed, using defaults: %s", exc)
        state = UserState(
            emotion_frequency=emotion_frequency,
            belief_vector=belief,
            emotion_history=[emotion_frequency],
            intention_vector=belief,
            recent_outputs=[],
        )
        base = self.calculate(state)
        scale = REGULATION_SCALE.get(str(regulation_level).lower(), 0.5)
        components = ResonanceComponents(
            belief_coherence=base.components.belief_coherence,
            emotion_stability=base.components.emotion_stability * scale,
            value_alignment=base.components.value_alignment,
        )
        return ResonanceResult(
            resonance_index=aggregate(components, self.config.weights),
            components=components,
            timestamp=base.timestamp,
        )

    # ------------------------------------------------------------------
    # Sub-signals
    # ------------------------------------------------------------------

    def belief_coherence(
        self,
        belief_vector: Optional[Sequence[float]],
        target_vector: Optional[Sequence[float]],
    ) -> float:
        default = self.config.default_belief_coherence
        if belief_vector is None or target_vector is None:
            return clamp(default)
        try:
            return clamp(cosine_similarity(belief_vector, target_vector))
        except DimensionMismatchError as exc:
            logger.warning("belief/target mismatch (%s); using default coherence", exc)
            return clamp(default)

    def emotion_stability(self, history: Sequence[float], current: float) -> float:
        values = [float(v) for v in (history or [])]
        if len(values) < self.config.min_history_length:
            return clamp(current)
        window = np.asarray(values[-self.config.window_size :], dtype=float)
        std = float(np.std(window))
        if not np.isfinite(std):
            return clamp(current)
        return clamp(max(0.0, 1.0 - std))

    def value_alignment(
        self,
        intention_vector: Optional[Sequence[float]],
        recent_outputs: Sequence[str],
    ) -> float:
        default = self.config.default_value_alignment
        outputs = [text for text in (recent_outputs or []) if text]
        if intention_vector is None or not outputs or self.embedder is None:
            return clamp(default)
        similarities: List[float] = []
        for text in outputs:
            try:
                embedding = self.embedder.embed(text)
                similarities.append(cosine_similarity(intention_vector, embedding))
            except Exception as exc:
                logger.warning("dropping output from value alignment: %s", exc)
        if not similarities:
            return clamp(default)
        return clamp(float(np.mean(similarities)))


__all__ = [
    "REGULATION_SCALE",
    "UserState",
    "ResonanceComponents",
    "ResonanceResult",
    "ResonanceCalculator",
    "aggregate",
]
