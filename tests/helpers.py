"""Shared fakes and builders for the ROE test-suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from roe.records import FeedbackRecord, Intervention, OutcomeRecord
from roe.store import InMemoryStore

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeEmbedder:
    """Deterministic embedder; texts listed in ``fail`` raise."""

    def __init__(self, vectors: Optional[Dict[str, Sequence[float]]] = None, fail: Iterable[str] = ()) -> None:
        self.vectors = dict(vectors or {})
        self.fail = set(fail)
        self.calls: List[str] = []

    def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if text in self.fail:
            raise RuntimeError(f"backend unavailable for {text!r}")
        if text in self.vectors:
            return list(self.vectors[text])
        seed = sum(ord(ch) for ch in text)
        return [float((seed * (i + 3)) % 7) + 1.0 for i in range(4)]


class FixedClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def add_history(
    store: InMemoryStore,
    user_id: str,
    values: Sequence[float],
    *,
    end: datetime = NOW,
    spacing: timedelta = timedelta(hours=6),
    profile: Optional[str] = None,
    emotion: Optional[str] = None,
) -> None:
    """Append ``values`` oldest first, the last one stamped at ``end``."""
    n = len(values)
    for idx, value in enumerate(values):
        store.add_outcome(
            OutcomeRecord(
                user_id=user_id,
                resonance_index=value,
                created_at=end - spacing * (n - 1 - idx),
                belief_profile_id=profile,
                emotion_label=emotion,
            )
        )


def add_feedback(
    store: InMemoryStore,
    intervention_id: str,
    scores_by_user: Dict[str, Sequence[float]],
    *,
    at: datetime = NOW - timedelta(days=1),
) -> None:
    for user_id, scores in scores_by_user.items():
        for score in scores:
            store.append_feedback(
                FeedbackRecord(
                    user_id=user_id,
                    intervention_id=intervention_id,
                    fulfillment_score=score,
                    timestamp=at,
                )
            )


def make_intervention(iid: str, **kwargs) -> Intervention:
    return Intervention(id=iid, name=kwargs.pop("name", iid.title()), **kwargs)
