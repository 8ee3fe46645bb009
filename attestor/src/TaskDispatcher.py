"""TaskDispatcher: Drives each task through its lifecycle.

State machine, per (task index, operator)::

    pending -> dispatching -> responded
                           -> failed

Architecture:
    - Every inbound task is recorded; unknown task types stay pending
    - pending -> dispatching is a compare-and-set in the database, so of any
      number of concurrent attempts on the same task (in this process or in
      another operator instance sharing the database) exactly one proceeds
    - The handler runs under a timeout; any handler error marks the task
      failed with a short reason and no response row
    - A successful result is encoded, signed and stored together with the
      status change in one transaction, then published on ``task-response``
    - Redelivery of a task that already responded or failed is a no-op
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from .AttestationSigner import SigningFailure
from .EventBus import TASK_RESPONSES
from .HealthTracker import HealthTracker
from .Task import Task, TaskResponse, TaskStatus, TaskType
from .handlers import (
    DEFAULT_HANDLERS,
    HandlerContext,
    TaskHandler,
    TaskHandlerError,
    TaskResult,
    VolatilityResult,
)

if TYPE_CHECKING:
    from .AttestationSigner import AttestationSigner
    from .EventBus import EventBus
    from .OperatorDatabase import OperatorDatabase
    from .PriceStore import PriceStore

logger = logging.getLogger(__name__)

SIGNER_KEY = "signer"


class TaskDispatcher:
    """Processes tasks for one operator.

    :ivar operator: Operator address the tasks are recorded under.
    :ivar task_timeout: Timeout for one handler run in seconds.
    :ivar health: Signing failure tracking.
    """

    def __init__(
        self,
        signer: AttestationSigner,
        store: PriceStore,
        database: OperatorDatabase,
        bus: EventBus,
        handlers: Mapping[TaskType, TaskHandler] = DEFAULT_HANDLERS,
        task_timeout: float = 30.0,
        signer_degraded_after: int = HealthTracker.DEFAULT_DEGRADED_AFTER,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the dispatcher.

        :param signer: Signer holding the operator key.
        :param store: Price store read by handlers.
        :param database: Relational store for tasks and responses.
        :param bus: Event bus for task responses.
        :param handlers: Mapping of task type to handler.
        :param task_timeout: Handler timeout in seconds (default: 30.0).
        :param signer_degraded_after: Consecutive signing failures after
            which the signer is reported degraded.
        :param clock: Time source returning unix seconds.
        """
        self.signer = signer
        self.operator = signer.address
        self.store = store
        self.database = database
        self.bus = bus
        self.handlers = handlers
        self.task_timeout = task_timeout
        self.clock = clock
        self.health = HealthTracker([SIGNER_KEY], degraded_after=signer_degraded_after)

    @property
    def signer_degraded(self) -> bool:
        """True while signing has failed for several tasks in a row."""
        return self.health.is_degraded(SIGNER_KEY)

    async def dispatch(self, task: Task) -> TaskStatus | None:
        """Process one inbound task.

        :param task: Task from the task source.
        :returns: Status of the task after this call.
        """
        new = await self.database.record_task(task, self.operator)
        if not new:
            logger.debug(f"[task {task.task_index}] Redelivered")

        task_type = task.known_type
        if task_type is None or task_type not in self.handlers:
            logger.info(
                f"[task {task.task_index}] Ignoring unknown task type {task.task_type}"
            )
            return await self.database.get_task_status(task.task_index, self.operator)

        if not await self.database.claim_task(task.task_index, self.operator):
            status = await self.database.get_task_status(task.task_index, self.operator)
            logger.info(
                f"[task {task.task_index}] Already {status.value if status else 'unknown'}, skipping"
            )
            return status

        logger.info(f"[task {task.task_index}] Dispatching {task_type.name}")
        try:
            return await self._process(task, task_type)
        except asyncio.CancelledError:
            await self._fail(task, "cancelled")
            raise

    async def _process(self, task: Task, task_type: TaskType) -> TaskStatus | None:
        handler = self.handlers[task_type]
        ctx = HandlerContext(store=self.store, database=self.database, now=int(self.clock()))

        try:
            result = await asyncio.wait_for(handler(task, ctx), timeout=self.task_timeout)
            payload = result.encode()
        except asyncio.TimeoutError:
            return await self._fail(task, "timeout", f"handler exceeded {self.task_timeout}s")
        except TaskHandlerError as e:
            return await self._fail(task, e.reason, e)
        except Exception as e:
            return await self._fail(task, "handler_error", e)

        try:
            signature = self.signer.sign(task.task_index, payload)
        except SigningFailure as e:
            self._record_signing_failure(e)
            return await self._fail(task, "signing_failure", e)
        self.health.record_success(SIGNER_KEY)

        response = TaskResponse(
            task_index=task.task_index,
            operator=self.operator,
            payload=payload,
            signature=signature,
        )
        if not await self.database.complete_task(response):
            status = await self.database.get_task_status(task.task_index, self.operator)
            logger.warning(
                f"[task {task.task_index}] Response not stored, task is "
                f"{status.value if status else 'unknown'}"
            )
            return status

        await self._after_response(response, result)
        logger.info(f"[task {task.task_index}] Responded ({len(payload)} byte payload)")
        return TaskStatus.RESPONDED

    async def _after_response(self, response: TaskResponse, result: TaskResult) -> None:
        if isinstance(result, VolatilityResult):
            try:
                await self.database.record_volatility(
                    asset=result.asset,
                    volatility_bps=result.volatility_bps,
                    period_hours=result.period_hours,
                    data_points=result.data_points,
                    recorded_at=result.timestamp,
                    task_index=response.task_index,
                )
            except SQLAlchemyError as e:
                logger.error(
                    f"[task {response.task_index}] Failed to record volatility "
                    f"({type(e).__name__}): {e}"
                )

        try:
            await self.bus.publish(TASK_RESPONSES, response.to_event())
        except (RedisError, OSError) as e:
            logger.error(
                f"[task {response.task_index}] Failed to publish response ({type(e).__name__}): {e}"
            )

    async def _fail(self, task: Task, reason: str, error: object = None) -> TaskStatus:
        detail = f": {error}" if error else ""
        logger.warning(f"[task {task.task_index}] Failed ({reason}){detail}")
        await self.database.fail_task(task.task_index, self.operator, reason)
        return TaskStatus.FAILED

    def _record_signing_failure(self, error: SigningFailure) -> None:
        streak = self.health.record_failure(SIGNER_KEY, str(error))
        if streak == self.health.degraded_after:
            logger.critical(f"Signer degraded after {streak} consecutive signing failures")

    async def recover(self) -> list[Task]:
        """Reconcile tasks left non-terminal by a previous run.

        Tasks left dispatching are marked failed with reason
        ``interrupted``. Pending tasks of a known type are returned so they
        can be dispatched again.

        :returns: Tasks to re-queue.
        """
        requeue: list[Task] = []
        for task, status in await self.database.non_terminal_tasks(self.operator):
            if status is TaskStatus.DISPATCHING:
                await self.database.fail_task(task.task_index, self.operator, "interrupted")
                logger.warning(f"[task {task.task_index}] Interrupted by restart, marked failed")
            elif task.known_type in self.handlers:
                requeue.append(task)
        if requeue:
            logger.info(f"Re-queueing {len(requeue)} pending tasks")
        return requeue

    async def _worker(self, queue: asyncio.Queue[Task]) -> None:
        while True:
            task = await queue.get()
            try:
                await self.dispatch(task)
            except Exception as e:
                logger.error(
                    f"[task {task.task_index}] Dispatch error ({type(e).__name__}): {e}"
                )
            finally:
                queue.task_done()

    async def run(self, queue: asyncio.Queue[Task], workers: int = 4) -> None:
        """Process tasks from queue with a fixed number of workers until cancelled.

        :param queue: Inbound task queue.
        :param workers: Maximum number of tasks processed concurrently.
        """
        logger.info(f"Starting task dispatcher with {workers} workers (operator {self.operator})")
        await asyncio.gather(*(self._worker(queue) for _ in range(workers)))
