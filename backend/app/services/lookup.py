from __future__ import annotations
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Sequence, TypeVar, Union

import structlog

log = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class Found(Generic[T]):
    value: T


@dataclass(frozen=True)
class NotFound:
    pass


@dataclass(frozen=True)
class ReadError:
    error: Exception


ReadOutcome = Union[Found[T], NotFound, ReadError]
Strategy = Callable[[], Awaitable[ReadOutcome]]


async def read_first(strategies: Sequence[tuple[str, Strategy]]) -> T | None:
    """
    Run named read strategies in order and return the first found value.

    Only ``NotFound`` moves on to the next strategy. A ``ReadError`` is raised
    as-is: a failing store ends the request instead of degrading to a weaker read.
    """
    for name, strategy in strategies:
        outcome = await strategy()
        if isinstance(outcome, Found):
            return outcome.value
        if isinstance(outcome, ReadError):
            log.error("read.failed", strategy=name, error=repr(outcome.error))
            raise outcome.error
        log.debug("read.not_found", strategy=name)
    return None
