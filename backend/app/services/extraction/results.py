"""
Tagged results and fallback chains for extraction strategies.

A strategy is an async callable taking a block and returning either
Ok(value) or Err(reason). A chain is an ordered tuple of strategies:
run_chain() tries them in order and stops at the first Ok. Reordering or
extending a fallback is a change to the tuple, not to control flow.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    reason: str

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]

Strategy = Callable[[Any], Awaitable[Result]]


@dataclass
class ChainOutcome(Generic[T]):
    """What a chain produced and why earlier strategies were passed over."""

    value: Optional[T] = None
    strategy: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.strategy is not None


def strategy_name(strategy: Strategy) -> str:
    return getattr(strategy, "__name__", None) or type(strategy).__name__


async def run_chain(strategies: Sequence[Strategy], subject: Any) -> ChainOutcome:
    """
    Try each strategy in order until one returns Ok.

    A strategy that raises instead of returning Err is treated as Err with
    the exception text, so one misbehaving provider cannot break the chain.

    Args:
        strategies: Ordered strategies
        subject: Argument passed to every strategy (usually an ArenaBlock)

    Returns:
        ChainOutcome with the first Ok value and the reasons collected before it
    """
    outcome: ChainOutcome = ChainOutcome()

    for strategy in strategies:
        name = strategy_name(strategy)
        try:
            result = await strategy(subject)
        except Exception as e:
            result = Err(f"{type(e).__name__}: {e}")

        if isinstance(result, Ok):
            outcome.value = result.value
            outcome.strategy = name
            return outcome

        outcome.errors.append(f"{name}: {result.reason}")
        logger.debug(f"Strategy {name} failed: {result.reason}")

    return outcome
