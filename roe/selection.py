# -*- coding: utf-8 -*-
"""Selection matrix: score candidate interventions and pick one.

    score = alpha * pattern_match + beta * RI + gamma * learning_weight
            - delta * (exp(fatigue / 10) - 1)

With diversity sampling on, the pick is drawn from a softmax over scores so
that the same pathway is not recommended over and over. Fatigue updates are
returned to the caller rather than applied here, which keeps scoring pure.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence

from .config import SelectionConfig
from .errors import DimensionMismatchError, EmptyCandidateSetError
from .records import Intervention
from .resonance import ResonanceResult
from .similarity import cosine_similarity

logger = logging.getLogger(__name__)

FATIGUE_RETENTION = 0.9
FATIGUE_INCREMENT = 1.0
# exp() overflows a float just past 709
MAX_FATIGUE_EXPONENT = 700.0


@dataclass(frozen=True)
class ScoreComponents:
    pattern_match: float
    resonance_contribution: float
    learning_prior: float
    fatigue_penalty: float


@dataclass(frozen=True)
class FieldScore:
    intervention: Intervention
    total_score: float
    components: ScoreComponents


@dataclass(frozen=True)
class SelectionResult:
    selected: Intervention
    score: FieldScore
    alternatives: List[FieldScore]
    selection_reasoning: str


def fatigue_penalty(fatigue_score: float) -> float:
    return math.exp(min(float(fatigue_score) / 10.0, MAX_FATIGUE_EXPONENT)) - 1.0


def update_fatigue(current: float) -> float:
    """Fatigue after being selected; converges to 10 under repeated use."""
    return float(current) * FATIGUE_RETENTION + FATIGUE_INCREMENT


def decay_fatigue(current: float, decay_rate: float = 0.1) -> float:
    return max(0.0, float(current) - float(decay_rate))


def pattern_match(user_state_vector: Optional[Sequence[float]], intervention: Intervention) -> float:
    if user_state_vector is None or intervention.pattern_vector is None:
        return 0.0
    try:
        return cosine_similarity(user_state_vector, intervention.pattern_vector)
    except DimensionMismatchError:
        return 0.0


def score_field(
    intervention: Intervention,
    user_state_vector: Optional[Sequence[float]],
    resonance: ResonanceResult,
    config: SelectionConfig,
) -> FieldScore:
    components = ScoreComponents(
        pattern_match=pattern_match(user_state_vector, intervention),
        resonance_contribution=resonance.resonance_index,
        learning_prior=intervention.learning_weight,
        fatigue_penalty=fatigue_penalty(intervention.fatigue_score),
    )
    total = (
        config.alpha * components.pattern_match
        + config.beta * components.resonance_contribution
        + config.gamma * components.learning_prior
        - config.delta * components.fatigue_penalty
    )
    return FieldScore(intervention=intervention, total_score=total, components=components)


def softmax(scores: Sequence[float], temperature: float) -> List[float]:
    if not scores:
        return []
    top = max(scores)
    exps = [math.exp((s - top) / temperature) for s in scores]
    total = sum(exps)
    return [e / total for e in exps]


class SelectionMatrix:
    """Score and choose among candidate interventions."""

    def __init__(
        self,
        config: Optional[SelectionConfig] = None,
        *,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config or SelectionConfig()
        self.rng = rng or random.Random()

    def rank(
        self,
        user_state_vector: Optional[Sequence[float]],
        resonance: ResonanceResult,
        candidates: Sequence[Intervention],
        config: Optional[SelectionConfig] = None,
    ) -> List[FieldScore]:
        cfg = config or self.config
        scored = [score_field(c, user_state_vector, resonance, cfg) for c in candidates]
        # stable sort keeps input order among ties
        return sorted(scored, key=lambda s: s.total_score, reverse=True)

    def select_field(
        self,
        user_state_vector: Optional[Sequence[float]],
        resonance: ResonanceResult,
        candidates: Sequence[Intervention],
        config: Optional[SelectionConfig] = None,
    ) -> SelectionResult:
        if not candidates:
            raise EmptyCandidateSetError("no interventions available for selection")
        cfg = config or self.config
        ranked = self.rank(user_state_vector, resonance, candidates, cfg)
        if cfg.diversity_sampling:
            chosen = self._diversity_select(ranked, cfg.temperature)
        else:
            chosen = ranked[0]
        alternatives = [s for s in ranked if s is not chosen][:3]
        reasoning = generate_reasoning(chosen, resonance)
        logger.debug(
            "selected %s score=%.3f of %d candidates",
            chosen.intervention.id,
            chosen.total_score,
            len(ranked),
        )
        return SelectionResult(
            selected=chosen.intervention,
            score=chosen,
            alternatives=alternatives,
            selection_reasoning=reasoning,
        )

    def _diversity_select(self, ranked: List[FieldScore], temperature: float) -> FieldScore:
        if len(ranked) == 1:
            return ranked[0]
        probabilities = softmax([s.total_score for s in ranked], temperature)
        draw = self.rng.random()
        cumulative = 0.0
        for scored, prob in zip(ranked, probabilities):
            cumulative += prob
            if draw <= cumulative:
                return scored
        return ranked[0]

    # Fatigue bookkeeping; the caller persists these through the store.

    @staticmethod
    def fatigued(intervention: Intervention) -> Intervention:
        return replace(intervention, fatigue_score=update_fatigue(intervention.fatigue_score))

    def rested(self, intervention: Intervention, decay_rate: Optional[float] = None) -> Intervention:
        rate = self.config.decay_rate if decay_rate is None else decay_rate
        return replace(intervention, fatigue_score=decay_fatigue(intervention.fatigue_score, rate))


def _dominant_component(components: ScoreComponents) -> Optional[str]:
    values: Dict[str, float] = {
        "pattern resonance": components.pattern_match,
        "current state coherence": components.resonance_contribution,
        "evidence-based effectiveness": components.learning_prior,
    }
    best = max(values.values())
    if best < 0.6:
        return None
    for name, value in values.items():
        if value == best:
            return name
    return None


def generate_reasoning(score: FieldScore, resonance: ResonanceResult) -> str:
    """Advisory explanation of a selection; not used for any decision."""
    c = score.components
    ri = resonance.resonance_index
    reasons: List[str] = []
    if c.pattern_match > 0.7:
        reasons.append(f"Strong pattern alignment ({c.pattern_match * 100:.0f}%)")
    if ri > 0.75:
        reasons.append(f"High resonance state (RI: {ri:.2f})")
    elif ri < 0.4:
        reasons.append(f"Supporting stabilization (RI: {ri:.2f})")
    if c.learning_prior > 0.7:
        reasons.append("Previously effective pathway")
    if c.fatigue_penalty > 1.0:
        reasons.append("Introducing variety to prevent habituation")
    dominant = _dominant_component(c)
    if dominant:
        reasons.append(f"Primary driver: {dominant}")
    return ". ".join(reasons)


__all__ = [
    "ScoreComponents",
    "FieldScore",
    "SelectionResult",
    "SelectionMatrix",
    "fatigue_penalty",
    "update_fatigue",
    "decay_fatigue",
    "pattern_match",
    "score_field",
    "softmax",
    "generate_reasoning",
]
