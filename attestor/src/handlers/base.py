"""Task handler interface, result encoding and handler error taxonomy.

A handler is an async function ``(task, context) -> TaskResult``. It only
reads from the price store and the database; every write belongs to the
dispatcher.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError

if TYPE_CHECKING:
    from ..OperatorDatabase import OperatorDatabase
    from ..PriceStore import PriceStore
    from ..Task import Task

logger = logging.getLogger(__name__)


class TaskHandlerError(Exception):
    """Base exception for handler failures.

    :cvar reason: Short failure reason persisted with the failed task.
    """

    reason: ClassVar[str] = "handler_error"


class MalformedTaskData(TaskHandlerError):
    """Raised when task parameters cannot be decoded or are out of range."""

    reason = "malformed_task_data"


class NoPriceData(TaskHandlerError):
    """Raised when no price has been recorded for the requested asset."""

    reason = "no_price_data"


class InsufficientHistory(TaskHandlerError):
    """Raised when the price history is too short for the calculation."""

    reason = "insufficient_history"


@dataclass(frozen=True)
class HandlerContext:
    """Read access and clock given to a handler.

    :ivar store: Price store.
    :ivar database: Relational store.
    :ivar now: Unix timestamp of the dispatch.
    """

    store: PriceStore
    database: OperatorDatabase
    now: int


class TaskResult(ABC):
    """A typed handler result that ABI-encodes into the response payload.

    :cvar ABI_TYPES: ABI types of the encoded tuple.
    """

    ABI_TYPES: ClassVar[tuple[str, ...]] = ()

    @abstractmethod
    def abi_values(self) -> tuple[Any, ...]:
        """Values matching ABI_TYPES, in order."""
        pass

    def encode(self) -> bytes:
        return encode(list(self.ABI_TYPES), list(self.abi_values()))


TaskHandler = Callable[["Task", HandlerContext], Awaitable[TaskResult]]


def decode_task_data(types: Sequence[str], data: bytes) -> tuple[Any, ...]:
    """Decode ABI-encoded task parameters.

    :param types: Expected ABI types.
    :param data: Encoded task data.
    :returns: Decoded values.
    :raises MalformedTaskData: If the data does not match the types.
    """
    try:
        return tuple(decode(list(types), data))
    except (DecodingError, ValueError, TypeError, OverflowError) as e:
        raise MalformedTaskData(f"Cannot decode task data as {list(types)}: {e}") from e
