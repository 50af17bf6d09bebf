# -*- coding: utf-8 -*-
"""Privacy-preserving cross-user learning.

Feedback from many users is pooled per intervention, but only through
cohorts of at least ``min_cohort_size`` distinct users (the k-anonymity
floor). Aggregates surfaced to an individual caller are perturbed with
Laplace-style noise at ``privacy_epsilon`` first; raw aggregates are used
only internally, to nudge learned weights.

Learned weights move by a damped blend::

    confidence = min(n / 50, 1)
    influence  = 0.3 * confidence
    target     = min(w + 0.1 * avg_vfs, 1) if avg_vfs > 0 else w
    w'         = w * (1 - influence) + target * influence

The noise here is a simplified Laplace approximation, not an audited
differential-privacy mechanism. Deployments handling sensitive data should
swap in a vetted DP library.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence, Set, Tuple, TypeVar

import numpy as np

from .config import CollectiveConfig, RetryPolicy
from .contracts import OutcomeStore
from .errors import StoreError
from .records import FeedbackRecord, Intervention, OutcomeRecord, utc_now
from .retry import call_with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")

BRANCH_PROFILE_WEIGHT = 0.4
BRANCH_EMOTION_WEIGHT = 0.3
BRANCH_RI_WEIGHT = 0.3
BRANCH_RI_SPAN = 0.5
SIMILAR_RESONANCE_DELTA = 0.1
MAX_SYNCHRONICITIES = 10


@dataclass(frozen=True)
class UserCohort:
    """A k-anonymous group. Member ids stay inside the aggregator."""

    ri_range: Tuple[float, float]
    profile_ids: Tuple[Optional[str], ...] = ()
    emotion_labels: Tuple[Optional[str], ...] = ()
    member_ids: FrozenSet[str] = field(default_factory=frozenset, repr=False)

    @property
    def size(self) -> int:
        return len(self.member_ids)


@dataclass(frozen=True)
class CollectiveInsight:
    intervention_id: str
    name: str
    cohort_size: int
    avg_vfs: float
    confidence: float
    usage_count: int
    success_rate: float
    reasoning: str


@dataclass(frozen=True)
class SynchronicityMatch:
    peer_token: str
    branch_id: str
    similarity: float
    shared_patterns: List[str]
    temporal_proximity: float


# ----------------------------------------------------------------------
# Pure helpers
# ----------------------------------------------------------------------


def calculate_collective_weight(
    current_weight: float,
    avg_vfs: float,
    sample_size: int,
    *,
    max_influence: float = 0.3,
    full_confidence_samples: int = 50,
) -> float:
    sample_confidence = min(max(0, int(sample_size)) / float(full_confidence_samples), 1.0)
    influence = max_influence * sample_confidence
    target = collective_target(current_weight, avg_vfs)
    return current_weight * (1.0 - influence) + target * influence


def collective_target(current_weight: float, avg_vfs: float) -> float:
    if avg_vfs > 0:
        return min(current_weight + avg_vfs * 0.1, 1.0)
    return current_weight


def calculate_confidence(cohort_size: int, scores: Sequence[float]) -> float:
    size_confidence = min(cohort_size / 20.0, 1.0)
    if len(scores) == 0:
        return size_confidence / 2.0
    consistency = 1.0 - min(float(np.std(np.asarray(scores, dtype=float))) / 0.5, 1.0)
    return (size_confidence + consistency) / 2.0


def calculate_branch_similarity(a: OutcomeRecord, b: OutcomeRecord) -> float:
    similarity = 0.0
    if a.belief_profile_id is not None and a.belief_profile_id == b.belief_profile_id:
        similarity += BRANCH_PROFILE_WEIGHT
    if a.emotion_label is not None and a.emotion_label == b.emotion_label:
        similarity += BRANCH_EMOTION_WEIGHT
    ri_diff = abs(a.resonance_index - b.resonance_index)
    similarity += (1.0 - min(ri_diff / BRANCH_RI_SPAN, 1.0)) * BRANCH_RI_WEIGHT
    return similarity


def shared_patterns(a: OutcomeRecord, b: OutcomeRecord) -> List[str]:
    patterns: List[str] = []
    if a.belief_profile_id is not None and a.belief_profile_id == b.belief_profile_id:
        patterns.append("shared_profile")
    if a.emotion_label is not None and a.emotion_label == b.emotion_label:
        patterns.append("shared_emotion_state")
    if abs(a.resonance_index - b.resonance_index) < SIMILAR_RESONANCE_DELTA:
        patterns.append("similar_resonance")
    return patterns


def insight_reasoning(avg_vfs: float, success_rate: float, cohort_size: int) -> str:
    if avg_vfs > 0.6:
        head = "Highly effective for similar users"
    elif avg_vfs > 0.3:
        head = "Moderately helpful"
    elif avg_vfs > 0:
        head = "Mixed results"
    else:
        head = "Lower effectiveness reported"
    return " • ".join(
        [head, f"{round(success_rate * 100)}% positive feedback", f"{cohort_size} users in cohort"]
    )


def trajectory_stability(values: Sequence[float]) -> float:
    if len(values) < 2:
        return 1.0
    return 1.0 - min(float(np.std(np.asarray(values, dtype=float))) / 0.5, 1.0)


# ----------------------------------------------------------------------
# Aggregator
# ----------------------------------------------------------------------


class CollectiveLearningAggregator:
    """Pool feedback across users without exposing any individual."""

    def __init__(
        self,
        store: OutcomeStore,
        config: Optional[CollectiveConfig] = None,
        *,
        rng: Optional[np.random.Generator] = None,
        clock: Callable[[], datetime] = utc_now,
        retry: Optional[RetryPolicy] = None,
        token_salt: Optional[str] = None,
    ) -> None:
        self.store = store
        self.config = config or CollectiveConfig()
        self.rng = rng if rng is not None else np.random.default_rng()
        self._clock = clock
        self._retry = retry or RetryPolicy()
        self._salt = token_salt if token_salt is not None else secrets.token_hex(8)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_collective_insights(self, user_id: str, limit: int = 5) -> List[CollectiveInsight]:
        state = self._latest_outcome(user_id)
        if state is None:
            return []
        cohort = self.find_similar_cohort(state)
        if cohort.size < self.config.min_cohort_size:
            logger.debug("cohort too small for insights (size=%d)", cohort.size)
            return []
        feedback = [f for f in self._recent_feedback() if f.user_id in cohort.member_ids]
        insights = [self._noised(i) for i in self._aggregate(feedback)]
        insights.sort(key=lambda i: i.avg_vfs, reverse=True)
        return insights[: max(0, int(limit))]

    def update_collective_weights(self, intervention_id: str) -> None:
        feedback = self._recent_feedback(intervention_id)
        users = {f.user_id for f in feedback}
        if len(users) < self.config.min_cohort_size:
            logger.debug(
                "skipping weight update for %s: %d users below floor",
                intervention_id,
                len(users),
            )
            return
        avg_vfs = float(np.mean([f.fulfillment_score for f in feedback]))
        sample_size = len(feedback)
        stamp = self._clock().isoformat()
        # metadata travels back to callers with the row, so it only carries noised values
        published_vfs = self.add_noise(avg_vfs)
        published_size = self._noised_count(sample_size)

        def blend(row: Intervention) -> Intervention:
            new_weight = calculate_collective_weight(
                row.learning_weight,
                avg_vfs,
                sample_size,
                max_influence=self.config.max_influence,
                full_confidence_samples=self.config.full_confidence_samples,
            )
            metadata = dict(row.metadata)
            metadata.update(
                collective_vfs=published_vfs,
                collective_sample_size=published_size,
                last_collective_update=stamp,
            )
            return replace(row, learning_weight=new_weight, metadata=metadata)

        updated = self._call(lambda: self.store.update_intervention(intervention_id, blend), "update_intervention")
        if updated is None:
            logger.warning("collective update skipped: unknown intervention %s", intervention_id)
            return
        logger.info(
            "collective weight for %s -> %.4f (n=%d)",
            intervention_id,
            updated.learning_weight,
            sample_size,
        )

    def get_personalized_learning_rate(self, user_id: str, base_rate: float = 0.05) -> float:
        state = self._latest_outcome(user_id)
        if state is None:
            return base_rate
        cohort = self.find_similar_cohort(state)
        if cohort.size < self.config.min_cohort_size:
            return base_rate
        stability = self.cohort_stability(cohort)
        if stability > 0.7:
            modifier = 1.2
        elif stability < 0.4:
            modifier = 0.8
        else:
            modifier = 1.0
        return max(0.01, min(0.2, base_rate * modifier))

    def detect_synchronicities(
        self,
        user_id: str,
        window: timedelta = timedelta(days=7),
    ) -> List[SynchronicityMatch]:
        cutoff = self._clock() - window
        own = self._call(
            lambda: self.store.recent_outcomes(user_id, self.config.temporal_scan_limit),
            "recent_outcomes",
        )
        mine = [o for o in own if o.created_at >= cutoff]
        if not mine:
            return []
        cohort = self.find_temporal_cohort(user_id, window)
        if cohort.size < self.config.min_cohort_size:
            return []
        # the cohort scan is capped; candidate branches come from the whole window
        recent = self._call(lambda: self.store.outcomes_since(cutoff), "outcomes_since")
        others = [o for o in recent if o.user_id != user_id]
        window_s = max(window.total_seconds(), 1e-9)
        matches: List[SynchronicityMatch] = []
        for own in mine:
            for other in others:
                similarity = calculate_branch_similarity(own, other)
                if similarity < self.config.similarity_threshold:
                    continue
                gap = abs((own.created_at - other.created_at).total_seconds())
                matches.append(
                    SynchronicityMatch(
                        peer_token=self._peer_token(other.user_id),
                        branch_id=other.id,
                        similarity=similarity,
                        shared_patterns=shared_patterns(own, other),
                        temporal_proximity=1.0 - min(gap / window_s, 1.0),
                    )
                )
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:MAX_SYNCHRONICITIES]

    # ------------------------------------------------------------------
    # Cohorts
    # ------------------------------------------------------------------

    def find_similar_cohort(self, state: OutcomeRecord) -> UserCohort:
        band = self.config.ri_band
        lo = max(0.0, state.resonance_index - band)
        hi = min(1.0, state.resonance_index + band)
        rows = self._call(
            lambda: self.store.outcomes_in_ri_band(lo, hi, self.config.cohort_scan_limit),
            "outcomes_in_ri_band",
        )
        members: Set[str] = set()
        for row in rows:
            profile_hit = state.belief_profile_id is not None and row.belief_profile_id == state.belief_profile_id
            emotion_hit = state.emotion_label is not None and row.emotion_label == state.emotion_label
            if profile_hit or emotion_hit:
                members.add(row.user_id)
        return UserCohort(
            ri_range=(lo, hi),
            profile_ids=(state.belief_profile_id,),
            emotion_labels=(state.emotion_label,),
            member_ids=frozenset(members),
        )

    def find_temporal_cohort(self, user_id: str, window: timedelta) -> UserCohort:
        cutoff = self._clock() - window
        rows = self._call(
            lambda: self.store.outcomes_since(cutoff, self.config.temporal_scan_limit),
            "outcomes_since",
        )
        members = {row.user_id for row in rows if row.user_id != user_id}
        return UserCohort(ri_range=(0.0, 1.0), member_ids=frozenset(members))

    def cohort_stability(self, cohort: UserCohort) -> float:
        """Mean RI-trajectory stability of the cohort's members."""
        if cohort.size < self.config.min_cohort_size:
            return 0.0
        scores = []
        for member in sorted(cohort.member_ids):
            history = self._call(lambda m=member: self.store.recent_outcomes(m, 10), "recent_outcomes")
            scores.append(trajectory_stability([row.resonance_index for row in history]))
        return float(np.mean(scores)) if scores else 0.0

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _aggregate(self, feedback: Sequence[FeedbackRecord]) -> List[CollectiveInsight]:
        per_field: Dict[str, Tuple[List[float], Set[str]]] = {}
        for row in feedback:
            scores, users = per_field.setdefault(row.intervention_id, ([], set()))
            scores.append(row.fulfillment_score)
            users.add(row.user_id)

        insights: List[CollectiveInsight] = []
        for intervention_id, (scores, users) in per_field.items():
            if len(users) < self.config.min_cohort_size:
                continue
            intervention = self._call(
                lambda i=intervention_id: self.store.get_intervention(i), "get_intervention"
            )
            if intervention is None:
                continue
            avg_vfs = float(np.mean(scores))
            success_rate = sum(1 for s in scores if s > 0) / len(scores)
            insights.append(
                CollectiveInsight(
                    intervention_id=intervention_id,
                    name=intervention.name,
                    cohort_size=len(users),
                    avg_vfs=avg_vfs,
                    confidence=calculate_confidence(len(users), scores),
                    usage_count=len(scores),
                    success_rate=success_rate,
                    reasoning=insight_reasoning(avg_vfs, success_rate, len(users)),
                )
            )
        return insights

    def add_noise(self, value: float) -> float:
        scale = 1.0 / self.config.privacy_epsilon
        noise = float(self.rng.laplace(0.0, scale))
        return float(value) + noise * self.config.noise_scale

    def _noised(self, insight: CollectiveInsight) -> CollectiveInsight:
        return replace(
            insight,
            avg_vfs=self.add_noise(insight.avg_vfs),
            usage_count=self._noised_count(insight.usage_count),
        )

    def _noised_count(self, count: int) -> int:
        return max(0, int(np.floor(self.add_noise(count))))

    def _recent_feedback(self, intervention_id: Optional[str] = None) -> List[FeedbackRecord]:
        cutoff = self._clock() - timedelta(days=self.config.feedback_window_days)
        return self._call(lambda: self.store.feedback_since(cutoff, intervention_id), "feedback_since")

    def _latest_outcome(self, user_id: str) -> Optional[OutcomeRecord]:
        rows = self._call(lambda: self.store.recent_outcomes(user_id, 1), "recent_outcomes")
        return rows[0] if rows else None

    def _peer_token(self, user_id: str) -> str:
        return hashlib.sha256(f"{self._salt}:{user_id}".encode("utf-8")).hexdigest()[:16]

    def _call(self, fn: Callable[[], T], label: str) -> T:
        try:
            return call_with_retry(fn, self._retry, label=f"store.{label}")
        except Exception as exc:
            raise StoreError(f"{label} failed: {exc}") from exc


__all__ = [
    "UserCohort",
    "CollectiveInsight",
    "SynchronicityMatch",
    "CollectiveLearningAggregator",
    "calculate_collective_weight",
    "collective_target",
    "calculate_confidence",
    "calculate_branch_similarity",
    "shared_patterns",
    "insight_reasoning",
    "trajectory_stability",
]
