"""In-memory reference store with single-row atomic updates."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, Iterable, List, Optional

from .records import EventRecord, FeedbackRecord, Intervention, OutcomeRecord

logger = logging.getLogger(__name__)


@dataclass
class InMemoryStore:
    """Thread-safe store for tests and local runs.

    ``event_log_path`` optionally mirrors every audit event to a JSONL file.
    """

    event_log_path: Optional[Path] = None
    _outcomes: List[OutcomeRecord] = field(default_factory=list)
    _interventions: Dict[str, Intervention] = field(default_factory=dict)
    _feedback: List[FeedbackRecord] = field(default_factory=list)
    _events: List[EventRecord] = field(default_factory=list)
    _lock: Lock = field(default_factory=Lock)

    # ------------------------------------------------------------------
    # Outcome history
    # ------------------------------------------------------------------

    def add_outcome(self, record: OutcomeRecord) -> None:
        with self._lock:
            self._outcomes.append(record)

    def recent_outcomes(self, user_id: str, limit: int) -> List[OutcomeRecord]:
        with self._lock:
            rows = [row for row in self._outcomes if row.user_id == user_id]
        return _newest_first(rows, lambda r: r.created_at)[: max(0, int(limit))]

    def outcomes_since(self, cutoff: datetime, limit: Optional[int] = None) -> List[OutcomeRecord]:
        with self._lock:
            rows = [row for row in self._outcomes if row.created_at >= cutoff]
        rows = _newest_first(rows, lambda r: r.created_at)
        return rows if limit is None else rows[: max(0, int(limit))]

    def outcomes_in_ri_band(self, lo: float, hi: float, limit: int) -> List[OutcomeRecord]:
        with self._lock:
            rows = [row for row in self._outcomes if lo <= row.resonance_index <= hi]
        return _newest_first(rows, lambda r: r.created_at)[: max(0, int(limit))]

    # ------------------------------------------------------------------
    # Interventions
    # ------------------------------------------------------------------

    def get_intervention(self, intervention_id: str) -> Optional[Intervention]:
        with self._lock:
            return self._interventions.get(intervention_id)

    def list_interventions(self) -> List[Intervention]:
        with self._lock:
            return list(self._interventions.values())

    def save_intervention(self, intervention: Intervention) -> None:
        with self._lock:
            self._interventions[intervention.id] = intervention

    def update_intervention(
        self,
        intervention_id: str,
        fn: Callable[[Intervention], Intervention],
    ) -> Optional[Intervention]:
        with self._lock:
            current = self._interventions.get(intervention_id)
            if current is None:
                return None
            updated = fn(current)
            if updated.id != intervention_id:
                raise ValueError("update_intervention cannot change the row id")
            self._interventions[intervention_id] = updated
            return updated

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def append_feedback(self, record: FeedbackRecord) -> None:
        with self._lock:
            self._feedback.append(record)

    def feedback_since(
        self,
        cutoff: datetime,
        intervention_id: Optional[str] = None,
    ) -> List[FeedbackRecord]:
        with self._lock:
            rows = [
                row
                for row in self._feedback
                if row.timestamp >= cutoff
                and (intervention_id is None or row.intervention_id == intervention_id)
            ]
        return _newest_first(rows, lambda r: r.timestamp)

    # ------------------------------------------------------------------
    # Audit events
    # ------------------------------------------------------------------

    def log_event(self, event: EventRecord) -> None:
        with self._lock:
            self._events.append(event)
        if self.event_log_path is not None:
            self._append_jsonl(Path(self.event_log_path), event.to_dict())

    def latest_event(self, user_id: str, event_type: str) -> Optional[EventRecord]:
        with self._lock:
            rows = [e for e in self._events if e.user_id == user_id and e.event_type == event_type]
        rows = _newest_first(rows, lambda e: e.created_at)
        return rows[0] if rows else None

    def events_since(self, user_id: str, event_type: str, cutoff: datetime) -> List[EventRecord]:
        with self._lock:
            rows = [
                e
                for e in self._events
                if e.user_id == user_id and e.event_type == event_type and e.created_at >= cutoff
            ]
        return _newest_first(rows, lambda e: e.created_at)

    def events(self, event_type: Optional[str] = None) -> List[EventRecord]:
        with self._lock:
            return [e for e in self._events if event_type is None or e.event_type == event_type]

    @staticmethod
    def _append_jsonl(path: Path, payload: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")


def _newest_first(rows: Iterable, key: Callable) -> list:
    # sorted() is stable, so equal timestamps keep insertion order reversed
    return sorted(list(rows)[::-1], key=key, reverse=True)


__all__ = ["InMemoryStore"]
