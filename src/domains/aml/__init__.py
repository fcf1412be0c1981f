"""Anti-money-laundering risk scoring domain."""

from .config import AMLConfig, default_config
from .counters import CounterStore, InMemoryCounterStore, RedisCounterStore, counter_key
from .models import (
    ActorSnapshot,
    AlertRecord,
    AMLStatus,
    AnalysisResult,
    Indicator,
    PaymentSnapshot,
    Verdict,
    classify_status,
)
from .repository import AMLRepository, SqlAlchemyAMLRepository
from .rules_engine import RulesEngine
from .scorer import AMLScorer

__all__ = [
    "AMLConfig",
    "AMLRepository",
    "AMLScorer",
    "AMLStatus",
    "ActorSnapshot",
    "AlertRecord",
    "AnalysisResult",
    "CounterStore",
    "InMemoryCounterStore",
    "Indicator",
    "PaymentSnapshot",
    "RedisCounterStore",
    "RulesEngine",
    "SqlAlchemyAMLRepository",
    "Verdict",
    "classify_status",
    "counter_key",
    "default_config",
]
