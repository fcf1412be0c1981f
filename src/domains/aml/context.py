"""Per-evaluation state shared by the AML rules."""

from dataclasses import dataclass, field
from datetime import datetime

from .config import AMLConfig
from .counters import CounterStore
from .models import ActorSnapshot, PaymentSnapshot
from .repository import AMLRepository


@dataclass
class EvaluationContext:
    """Everything a rule may read during one scoring pass.

    Counter values are memoised by key: the first rule that asks for a counter
    increments it, later rules in the same pass read the stored value. A store
    failure is memoised too, so every rule depending on that key skips.
    """

    payment: PaymentSnapshot
    actor: ActorSnapshot | None
    counters: CounterStore
    repository: AMLRepository
    config: AMLConfig
    now: datetime
    is_self_donation: bool = False
    _counts: dict[str, int] = field(default_factory=dict)
    _failures: dict[str, Exception] = field(default_factory=dict)

    @property
    def user_id(self) -> str | None:
        return self.payment.user_id

    async def tumbling_count(self, key: str, window_seconds: int) -> int:
        if key in self._failures:
            raise self._failures[key]
        if key not in self._counts:
            try:
                self._counts[key] = await self.counters.increment_with_window(
                    key, window_seconds
                )
            except Exception as exc:
                self._failures[key] = exc
                raise
        return self._counts[key]

    @property
    def counts(self) -> dict[str, int]:
        return dict(self._counts)
