# -*- coding: utf-8 -*-
"""Crisis monitoring over the RI history and the safety protocol table.

IMPORTANT: this is an early-warning aid that routes people to resources. It
is not a replacement for professional mental health care.

A failed check is never reported as "no crisis": :meth:`CrisisMonitor.check`
returns ``status="unknown"`` so callers can retry or escalate to a human
process. :meth:`CrisisMonitor.detect_crisis` keeps the plain
``CrisisLevel | None`` contract and logs the failure at ERROR level.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Literal, Optional, TypeVar

from .config import CrisisConfig
from .contracts import InstabilitySource, OutcomeStore
from .records import EventRecord, OutcomeRecord, utc_now
from .retry import call_with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")

Severity = Literal["low", "moderate", "high", "critical"]
CheckStatus = Literal["crisis", "clear", "insufficient", "unknown"]

SEVERITY_POINTS: Dict[str, int] = {
    "ri_plunge": 3,
    "prolonged_low_ri": 4,
    "harm_indicators": 5,
    "isolation_pattern": 2,
    "entropy_spike": 2,
}
SIGNAL_CONFIDENCE: Dict[str, float] = {
    "ri_plunge": 0.7,
    "prolonged_low_ri": 0.8,
    "harm_indicators": 0.9,
    "isolation_pattern": 0.5,
    "entropy_spike": 0.6,
}
EMERGENCY_SERVICES = "Emergency Services"


@dataclass(frozen=True)
class CrisisSignals:
    ri_plunge: bool = False
    prolonged_low_ri: bool = False
    # Reserved for an external text-risk classifier; always False here.
    harm_indicators: bool = False
    isolation_pattern: bool = False
    entropy_spike: bool = False

    def as_dict(self) -> Dict[str, bool]:
        return asdict(self)

    def triggered(self) -> List[str]:
        return [name for name, on in self.as_dict().items() if on]

    def any(self) -> bool:
        return bool(self.triggered())


@dataclass(frozen=True)
class CrisisLevel:
    severity: Severity
    confidence: float
    signals: CrisisSignals
    triggered_at: datetime


@dataclass(frozen=True)
class CrisisCheck:
    status: CheckStatus
    level: Optional[CrisisLevel] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class SafetyResource:
    type: Literal["hotline", "text", "chat", "professional"]
    name: str
    contact: str
    available: str
    description: str


@dataclass(frozen=True)
class SafetyProtocol:
    level: Severity
    actions: List[str]
    resources: List[SafetyResource]
    notify_guardian: bool
    suppress_recommendations: bool = False


_BASE_RESOURCES = (
    SafetyResource(
        type="hotline",
        name="988 Suicide & Crisis Lifeline",
        contact="988",
        available="24/7",
        description="Free, confidential support for people in distress",
    ),
    SafetyResource(
        type="text",
        name="Crisis Text Line",
        contact="Text HOME to 741741",
        available="24/7",
        description="Free 24/7 support via text message",
    ),
    SafetyResource(
        type="chat",
        name="NAMI HelpLine",
        contact="1-800-950-6264",
        available="M-F 10am-10pm ET",
        description="Mental health information and support",
    ),
)
_EMERGENCY = SafetyResource(
    type="hotline",
    name=EMERGENCY_SERVICES,
    contact="911",
    available="24/7",
    description="Immediate emergency response",
)

_PROTOCOL_ACTIONS: Dict[str, List[str]] = {
    "critical": [
        "Display emergency resources immediately",
        "Offer one-click crisis line connection",
        "Suggest going to safe environment",
        "Notify emergency guardian (if configured)",
        "Disable potentially triggering content",
    ],
    "high": [
        "Display prominent safety resources",
        "Suggest safety plan review",
        "Encourage reaching out to support network",
        "Offer connection to crisis services",
    ],
    "moderate": [
        "Display safety resources in sidebar",
        "Suggest self-care and grounding practices",
        "Remind of coping strategies",
        "Offer optional check-in with support",
    ],
    "low": [
        "Display subtle wellness check-in",
        "Suggest mindfulness practices",
        "Highlight positive patterns from history",
    ],
}

SAFETY_PLAN_STEPS = (
    "Recognize warning signs early (low energy, isolation urges, hopelessness)",
    "Use internal coping strategies (breathing, grounding, positive self-talk)",
    "Reach out to trusted friends or family members",
    "Contact professional support (therapist, crisis line)",
    "Remove access to means of harm",
    "Go to a safe environment or emergency room if needed",
)


def get_safety_resources(severity: str) -> List[SafetyResource]:
    resources = list(_BASE_RESOURCES)
    if severity in {"critical", "high"}:
        resources.insert(0, _EMERGENCY)
    return resources


def determine_safety_protocol(level: CrisisLevel) -> SafetyProtocol:
    """Fixed state table keyed on severity."""
    severity = level.severity
    resources = get_safety_resources(severity)
    if severity == "critical":
        return SafetyProtocol(
            level="critical",
            actions=list(_PROTOCOL_ACTIONS["critical"]),
            resources=resources,
            notify_guardian=True,
            suppress_recommendations=True,
        )
    if severity == "high":
        return SafetyProtocol(
            level="high",
            actions=list(_PROTOCOL_ACTIONS["high"]),
            resources=resources,
            notify_guardian=True,
        )
    if severity == "moderate":
        return SafetyProtocol(
            level="moderate",
            actions=list(_PROTOCOL_ACTIONS["moderate"]),
            resources=resources,
            notify_guardian=False,
        )
    return SafetyProtocol(
        level="low",
        actions=list(_PROTOCOL_ACTIONS["low"]),
        resources=[r for r in resources if r.name != EMERGENCY_SERVICES],
        notify_guardian=False,
    )


def calculate_severity(signals: CrisisSignals) -> Severity:
    score = sum(SEVERITY_POINTS[name] for name in signals.triggered())
    if score >= 8:
        return "critical"
    if score >= 5:
        return "high"
    if score >= 3:
        return "moderate"
    return "low"


def calculate_confidence(signals: CrisisSignals) -> float:
    triggered = signals.triggered()
    if not triggered:
        return 0.0
    return sum(SIGNAL_CONFIDENCE[name] for name in triggered) / len(triggered)


class CrisisMonitor:
    """Derive crisis severity from a user's outcome stream."""

    def __init__(
        self,
        store: OutcomeStore,
        instability: Optional[InstabilitySource] = None,
        config: Optional[CrisisConfig] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.instability = instability
        self.config = config or CrisisConfig()
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="roe-crisis")

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def detect_crisis(self, user_id: str) -> Optional[CrisisLevel]:
        return self.check(user_id).level

    def check(self, user_id: str) -> CrisisCheck:
        future = self._executor.submit(self._evaluate, user_id)
        try:
            result = future.result(timeout=self.config.timeout_s)
        except FutureTimeout:
            future.cancel()
            logger.error("crisis check for %s exceeded %.2fs; status unknown", user_id, self.config.timeout_s)
            return CrisisCheck(status="unknown", error="timeout")
        except Exception as exc:
            logger.error("crisis check for %s failed; status unknown: %s", user_id, exc)
            return CrisisCheck(status="unknown", error=str(exc))
        if result.level is not None:
            self._record(user_id, result.level)
        return result

    def analyze_signals(self, user_id: str) -> CrisisSignals:
        history = self._call(
            lambda: self.store.recent_outcomes(user_id, self.config.history_limit),
            "recent_outcomes",
        )
        return self.signals_from_history(history, self._entropy(user_id))

    def signals_from_history(
        self,
        history: List[OutcomeRecord],
        entropy: Optional[float] = None,
    ) -> CrisisSignals:
        """``history`` is newest first."""
        if len(history) < 2:
            return CrisisSignals()
        cfg = self.config
        delta = history[0].resonance_index - history[1].resonance_index
        cutoff = self._clock() - timedelta(days=cfg.low_ri_window_days)
        last_week = [row for row in history if row.created_at > cutoff]
        low = [row for row in last_week if row.resonance_index < cfg.ri_crisis_threshold]
        return CrisisSignals(
            ri_plunge=delta < -cfg.ri_plunge_threshold,
            prolonged_low_ri=len(low) >= cfg.low_ri_min_count,
            harm_indicators=False,
            isolation_pattern=len(last_week) < cfg.isolation_min_count,
            entropy_spike=entropy is not None and entropy > cfg.entropy_spike_threshold,
        )

    def generate_safety_plan(self, user_id: str) -> List[str]:
        steps = list(SAFETY_PLAN_STEPS)
        try:
            rows = self._call(lambda: self.store.recent_outcomes(user_id, 1), "recent_outcomes")
        except Exception as exc:
            logger.warning("safety plan personalisation unavailable for %s: %s", user_id, exc)
            return steps
        latest = rows[0] if rows else None
        if latest is None:
            return steps
        if latest.emotion_label == "anxious":
            steps.insert(1, "Practice 5-4-3-2-1 grounding technique when anxiety peaks")
        if latest.resonance_index < 0.4:
            steps.insert(1, "Return to previously helpful practices from your high-RI moments")
        return steps

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _evaluate(self, user_id: str) -> CrisisCheck:
        history = self._call(
            lambda: self.store.recent_outcomes(user_id, self.config.history_limit),
            "recent_outcomes",
        )
        if len(history) < 2:
            return CrisisCheck(status="insufficient")
        signals = self.signals_from_history(history, self._entropy(user_id))
        if not signals.any():
            return CrisisCheck(status="clear")
        severity = calculate_severity(signals)
        confidence = calculate_confidence(signals)
        if severity == "low" and confidence < 0.5:
            return CrisisCheck(status="clear")
        level = CrisisLevel(
            severity=severity,
            confidence=confidence,
            signals=signals,
            triggered_at=self._clock(),
        )
        return CrisisCheck(status="crisis", level=level)

    def _entropy(self, user_id: str) -> Optional[float]:
        if self.instability is None:
            return None
        value = self._call(lambda: self.instability.overall_entropy(user_id), "overall_entropy")
        return None if value is None else float(value)

    def _record(self, user_id: str, level: CrisisLevel) -> None:
        protocol = determine_safety_protocol(level)
        logger.warning(
            "crisis detected for %s: severity=%s confidence=%.2f signals=%s",
            user_id,
            level.severity,
            level.confidence,
            level.signals.triggered(),
        )
        try:
            self.store.log_event(
                EventRecord(
                    event_type="crisis.detected",
                    user_id=user_id,
                    payload={
                        "severity": level.severity,
                        "confidence": level.confidence,
                        "signals": level.signals.as_dict(),
                    },
                    created_at=level.triggered_at,
                )
            )
            self.store.log_event(
                EventRecord(
                    event_type="safety_protocol_activated",
                    user_id=user_id,
                    payload={
                        "crisis_level": level.severity,
                        "confidence": level.confidence,
                        "protocol": protocol.level,
                        "actions": protocol.actions,
                        "notify_guardian": protocol.notify_guardian,
                        "suppress_recommendations": protocol.suppress_recommendations,
                    },
                    created_at=level.triggered_at,
                )
            )
        except Exception as exc:
            logger.error("failed to write crisis audit events for %s: %s", user_id, exc)

    def _call(self, fn: Callable[[], T], label: str) -> T:
        return call_with_retry(fn, self.config.retry, label=f"crisis.{label}")


__all__ = [
    "Severity",
    "CrisisSignals",
    "CrisisLevel",
    "CrisisCheck",
    "SafetyResource",
    "SafetyProtocol",
    "CrisisMonitor",
    "SAFETY_PLAN_STEPS",
    "get_safety_resources",
    "determine_safety_protocol",
    "calculate_severity",
    "calculate_confidence",
]
