"""Collaborator contracts consumed by the ROE core."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional, Protocol, Sequence

from .records import EventRecord, FeedbackRecord, Intervention, OutcomeRecord


class EmbeddingService(Protocol):
    """Black-box text embedder returning fixed-length vectors."""

    def embed(self, text: str) -> Sequence[float]:
        """Return the embedding for ``text`` or raise on failure."""


class InstabilitySource(Protocol):
    """Supplies the system-instability metric (``entropy.overallEntropy``)."""

    def overall_entropy(self, user_id: str) -> Optional[float]:
        """Return the latest value for ``user_id`` or ``None`` when unknown."""


class OutcomeStore(Protocol):
    """Row store over outcomes, interventions, feedback and audit events.

    Listing methods return newest first.
    """

    def add_outcome(self, record: OutcomeRecord) -> None: ...

    def recent_outcomes(self, user_id: str, limit: int) -> List[OutcomeRecord]: ...

    def outcomes_since(self, cutoff: datetime, limit: Optional[int] = None) -> List[OutcomeRecord]: ...

    def outcomes_in_ri_band(self, lo: float, hi: float, limit: int) -> List[OutcomeRecord]: ...

    def get_intervention(self, intervention_id: str) -> Optional[Intervention]: ...

    def list_interventions(self) -> List[Intervention]: ...

    def save_intervention(self, intervention: Intervention) -> None: ...

    def update_intervention(
        self,
        intervention_id: str,
        fn: Callable[[Intervention], Intervention],
    ) -> Optional[Intervention]:
        """Atomically replace one row with ``fn(row)``; ``None`` if absent."""

    def append_feedback(self, record: FeedbackRecord) -> None: ...

    def feedback_since(
        self,
        cutoff: datetime,
        intervention_id: Optional[str] = None,
    ) -> List[FeedbackRecord]: ...

    def log_event(self, event: EventRecord) -> None: ...

    def latest_event(self, user_id: str, event_type: str) -> Optional[EventRecord]: ...

    def events_since(self, user_id: str, event_type: str, cutoff: datetime) -> List[EventRecord]: ...


__all__ = ["EmbeddingService", "InstabilitySource", "OutcomeStore"]
