# -*- coding: utf-8 -*-
"""Loaders for scoring coefficients, privacy floors and safety thresholds."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import InvalidArgumentError

_BASE_DIR = Path(__file__).resolve().parent
CONFIG_ENV = "ROE_CONFIG"


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    base_delay_s: float = 0.25
    max_delay_s: float = 2.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise InvalidArgumentError("retry attempts must be >= 1")
        if self.base_delay_s < 0 or self.max_delay_s < 0:
            raise InvalidArgumentError("retry delays must be non-negative")


@dataclass(frozen=True)
class ResonanceWeights:
    belief: float = 0.4
    emotion: float = 0.3
    value: float = 0.3

    def __post_init__(self) -> None:
        weights = (self.belief, self.emotion, self.value)
        if any(w < 0 for w in weights):
            raise InvalidArgumentError(f"resonance weights must be non-negative: {weights}")
        if sum(weights) > 1.0 + 1e-9:
            raise InvalidArgumentError(f"resonance weights must sum to <= 1: {weights}")


@dataclass(frozen=True)
class ResonanceConfig:
    weights: ResonanceWeights = ResonanceWeights()
    window_size: int = 10
    min_history_length: int = 3
    default_belief_coherence: float = 0.7
    default_value_alignment: float = 0.6


@dataclass(frozen=True)
class SelectionConfig:
    alpha: float = 0.4
    beta: float = 0.3
    gamma: float = 0.2
    delta: float = 0.1
    diversity_sampling: bool = True
    temperature: float = 0.2
    decay_rate: float = 0.1

    def __post_init__(self) -> None:
        if self.temperature <= 0:
            raise InvalidArgumentError("selection temperature must be > 0")
        if self.decay_rate < 0:
            raise InvalidArgumentError("fatigue decay rate must be >= 0")


@dataclass(frozen=True)
class CollectiveConfig:
    min_cohort_size: int = 5
    privacy_epsilon: float = 1.0
    noise_scale: float = 0.05
    similarity_threshold: float = 0.7
    ri_band: float = 0.15
    feedback_window_days: int = 30
    cohort_scan_limit: int = 100
    temporal_scan_limit: int = 200
    max_influence: float = 0.3
    full_confidence_samples: int = 50

    def __post_init__(self) -> None:
        if self.min_cohort_size < 5:
            raise InvalidArgumentError("min_cohort_size cannot go below the k-anonymity floor of 5")
        if self.privacy_epsilon <= 0:
            raise InvalidArgumentError("privacy_epsilon must be > 0")


@dataclass(frozen=True)
class CrisisConfig:
    ri_crisis_threshold: float = 0.25
    ri_plunge_threshold: float = 0.3
    low_ri_window_days: int = 7
    low_ri_min_count: int = 5
    isolation_min_count: int = 2
    entropy_spike_threshold: float = 0.7
    history_limit: int = 20
    timeout_s: float = 2.0
    suppression_window_hours: float = 24.0
    retry: RetryPolicy = RetryPolicy(attempts=2, base_delay_s=0.05, max_delay_s=0.2)


@dataclass(frozen=True)
class EmbeddingConfig:
    target_dimensions: int = 768
    cache_max_entries: int = 1024
    cache_ttl_s: float = 24 * 60 * 60
    retry: RetryPolicy = RetryPolicy(attempts=3, base_delay_s=1.0, max_delay_s=4.0)


@dataclass(frozen=True)
class RoeConfig:
    resonance: ResonanceConfig = ResonanceConfig()
    selection: SelectionConfig = SelectionConfig()
    collective: CollectiveConfig = CollectiveConfig()
    crisis: CrisisConfig = CrisisConfig()
    embedding: EmbeddingConfig = EmbeddingConfig()
    store_retry: RetryPolicy = RetryPolicy()
    extras: Dict[str, Any] = field(default_factory=dict)


def _section(data: Mapping[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, Mapping):
        raise InvalidArgumentError(f"config section '{key}' must be a mapping")
    return dict(value)


def _retry(data: Mapping[str, Any], default: RetryPolicy) -> RetryPolicy:
    raw = data.pop("retry", None)
    if not raw:
        return default
    return RetryPolicy(**raw)


def config_from_dict(data: Optional[Mapping[str, Any]]) -> RoeConfig:
    data = dict(data or {})
    resonance = _section(data, "resonance")
    weights = ResonanceWeights(**(resonance.pop("weights", None) or {}))
    crisis = _section(data, "crisis")
    crisis_retry = _retry(crisis, CrisisConfig().retry)
    embedding = _section(data, "embedding")
    embedding_retry = _retry(embedding, EmbeddingConfig().retry)
    store_retry = data.get("store_retry") or {}
    return RoeConfig(
        resonance=ResonanceConfig(weights=weights, **resonance),
        selection=SelectionConfig(**_section(data, "selection")),
        collective=CollectiveConfig(**_section(data, "collective")),
        crisis=CrisisConfig(retry=crisis_retry, **crisis),
        embedding=EmbeddingConfig(retry=embedding_retry, **embedding),
        store_retry=RetryPolicy(**store_retry) if store_retry else RetryPolicy(),
        extras=_section(data, "extras"),
    )


@lru_cache(maxsize=4)
def _load_cached(path: str) -> RoeConfig:
    yaml_path = Path(path)
    if not yaml_path.exists():
        return RoeConfig()
    data = yaml.safe_load(yaml_path.read_text(encoding="utf-8")) or {}
    return config_from_dict(data)


def load_config(path: str | Path | None = None) -> RoeConfig:
    """Load config from ``path``, ``$ROE_CONFIG`` or the packaged defaults."""
    if path is None:
        path = os.getenv(CONFIG_ENV) or (_BASE_DIR / "defaults.yaml")
    return _load_cached(str(Path(path).resolve()))


__all__ = [
    "RetryPolicy",
    "ResonanceWeights",
    "ResonanceConfig",
    "SelectionConfig",
    "CollectiveConfig",
    "CrisisConfig",
    "EmbeddingConfig",
    "RoeConfig",
    "config_from_dict",
    "load_config",
]
