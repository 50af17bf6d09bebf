"""Persistent record types shared by the store and the scoring components."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import numpy as np


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class Intervention:
    """A candidate recommendation with its learned prior and fatigue.

    ``learning_weight`` moves only through the collective blend; selection
    touches ``fatigue_score`` only.
    """

    id: str
    name: str = ""
    pattern_vector: Optional[Tuple[float, ...]] = None
    learning_weight: float = 0.5
    fatigue_score: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.pattern_vector is not None:
            vec = np.asarray(self.pattern_vector, dtype=float).reshape(-1)
            object.__setattr__(self, "pattern_vector", tuple(float(v) for v in vec))
        object.__setattr__(self, "fatigue_score", max(0.0, float(self.fatigue_score)))
        object.__setattr__(self, "learning_weight", float(self.learning_weight))

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["pattern_vector"] = list(self.pattern_vector) if self.pattern_vector is not None else None
        return payload


@dataclass(frozen=True)
class OutcomeRecord:
    """One point of a user's RI history (a "reality branch")."""

    user_id: str
    resonance_index: float
    created_at: datetime = field(default_factory=utc_now)
    belief_profile_id: Optional[str] = None
    emotion_label: Optional[str] = None
    id: str = field(default_factory=lambda: _new_id("branch"))
    extras: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FeedbackRecord:
    """Append-only outcome feedback; ``fulfillment_score`` lies in [-1, 1]."""

    user_id: str
    intervention_id: str
    fulfillment_score: float
    timestamp: datetime = field(default_factory=utc_now)
    resonance_delta: float = 0.0
    context: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: _new_id("vfl"))


@dataclass(frozen=True)
class EventRecord:
    event_type: str
    user_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: _new_id("evt"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "user_id": self.user_id,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
        }


__all__ = [
    "utc_now",
    "Intervention",
    "OutcomeRecord",
    "FeedbackRecord",
    "EventRecord",
]
