# -*- coding: utf-8 -*-
"""Value fulfillment score (VFS) and feedback recording."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, TypeVar

from .contracts import OutcomeStore
from .errors import InvalidArgumentError
from .records import EventRecord, FeedbackRecord, utc_now
from .similarity import clamp

logger = logging.getLogger(__name__)

T = TypeVar("T")

HARMONIZATION_THRESHOLD = -0.3
RESONANCE_DELTA_SCALE = 0.1


@dataclass(frozen=True)
class FeedbackOutcome:
    vfs_score: float
    resonance_delta: float
    intervention_id: str
    harmonization_triggered: bool


def _direct(fn: Callable[[], T], label: str) -> T:
    return fn()


def _signed(score01: float) -> float:
    return clamp(score01) * 2.0 - 1.0


def calculate_vfs(self_report: float, behavioral_metrics: Optional[Mapping[str, Any]] = None) -> float:
    """Fuse the self report with behavioral hints into one [-1, 1] score."""
    report = float(self_report)
    if not -1.0 <= report <= 1.0:
        raise InvalidArgumentError(f"self_report must lie in [-1, 1], got {report}")
    vfs = report * 0.6
    metrics = behavioral_metrics or {}
    completion = metrics.get("completion_rate")
    if completion is not None:
        vfs += _signed(float(completion)) * 0.2
    revisits = metrics.get("revisit_count")
    if revisits is not None:
        vfs += _signed(min(float(revisits) / 3.0, 1.0)) * 0.1
    dwell = metrics.get("dwell_time_seconds")
    if dwell is not None:
        vfs += _signed(min(float(dwell) / 60.0 / 10.0, 1.0)) * 0.1
    return clamp(vfs, -1.0, 1.0)


def record_feedback(
    store: OutcomeStore,
    *,
    user_id: str,
    intervention_id: str,
    self_report: float,
    behavioral_metrics: Optional[Mapping[str, Any]] = None,
    context: Optional[Mapping[str, Any]] = None,
    clock: Callable = utc_now,
    store_call: Optional[Callable[[Callable[[], Any], str], Any]] = None,
) -> FeedbackOutcome:
    """Append one feedback row. Learned weights are left to the aggregator.

    ``store_call(fn, label)`` wraps every store access; the engine passes its
    retrying wrapper so failures surface as :class:`StoreError`.
    """
    call = store_call or _direct
    if call(lambda: store.get_intervention(intervention_id), "get_intervention") is None:
        raise InvalidArgumentError(f"unknown intervention: {intervention_id}")
    vfs = calculate_vfs(self_report, behavioral_metrics)
    delta = vfs * RESONANCE_DELTA_SCALE
    payload: Dict[str, Any] = {"self_report": float(self_report)}
    if behavioral_metrics:
        payload["behavioral_metrics"] = dict(behavioral_metrics)
    payload.update(dict(context or {}))
    now = clock()
    record = FeedbackRecord(
        user_id=user_id,
        intervention_id=intervention_id,
        fulfillment_score=vfs,
        timestamp=now,
        resonance_delta=delta,
        context=payload,
    )
    call(lambda: store.append_feedback(record), "append_feedback")
    harmonize = vfs < HARMONIZATION_THRESHOLD
    if harmonize:
        logger.info("negative feedback trajectory on %s (vfs=%.2f)", intervention_id, vfs)
        event = EventRecord(
            event_type="harmonization.recommended",
            user_id=user_id,
            payload={
                "intervention_id": intervention_id,
                "vfs_score": vfs,
                "action": "weight_stabilization_recommended",
            },
            created_at=now,
        )
        call(lambda: store.log_event(event), "log_event")
    return FeedbackOutcome(
        vfs_score=vfs,
        resonance_delta=delta,
        intervention_id=intervention_id,
        harmonization_triggered=harmonize,
    )


__all__ = [
    "HARMONIZATION_THRESHOLD",
    "FeedbackOutcome",
    "calculate_vfs",
    "record_feedback",
]
