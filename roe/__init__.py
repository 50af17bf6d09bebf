"""ROE core: resonance scoring, intervention selection, collective learning
and crisis monitoring."""

from .collective import CollectiveInsight, CollectiveLearningAggregator, SynchronicityMatch, UserCohort
from .config import RoeConfig, load_config
from .crisis import CrisisCheck, CrisisLevel, CrisisMonitor, CrisisSignals, SafetyProtocol, SafetyResource
from .embedding import CachingEmbedder
from .engine import RoeEngine
from .errors import (
    CollaboratorError,
    DimensionMismatchError,
    EmbeddingError,
    EmptyCandidateSetError,
    InvalidArgumentError,
    RoeError,
    StoreError,
)
from .feedback import FeedbackOutcome, calculate_vfs
from .records import EventRecord, FeedbackRecord, Intervention, OutcomeRecord
from .resonance import ResonanceCalculator, ResonanceResult, UserState
from .selection import FieldScore, SelectionMatrix, SelectionResult
from .similarity import cosine_similarity
from .store import InMemoryStore

__all__ = [
    "CachingEmbedder",
    "CollaboratorError",
    "CollectiveInsight",
    "CollectiveLearningAggregator",
    "CrisisCheck",
    "CrisisLevel",
    "CrisisMonitor",
    "CrisisSignals",
    "DimensionMismatchError",
    "EmbeddingError",
    "EmptyCandidateSetError",
    "EventRecord",
    "FeedbackOutcome",
    "FeedbackRecord",
    "FieldScore",
    "InMemoryStore",
    "Intervention",
    "InvalidArgumentError",
    "OutcomeRecord",
    "ResonanceCalculator",
    "ResonanceResult",
    "RoeConfig",
    "RoeEngine",
    "RoeError",
    "SafetyProtocol",
    "SafetyResource",
    "SelectionMatrix",
    "SelectionResult",
    "StoreError",
    "SynchronicityMatch",
    "UserCohort",
    "UserState",
    "calculate_vfs",
    "cosine_similarity",
    "load_config",
]
