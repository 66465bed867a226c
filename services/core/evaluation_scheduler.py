"""
Evaluation Scheduler ("smart evaluation")

- batch_evaluate: walk every non-retired decision, dependencies first, and
  recompute only those that need it. One UnitOfWork per decision; a
  cancellation token is checked between decisions.
- EvaluationQueue: deduplicating queue keyed by decision id, drained by a
  background worker.
- start_scheduler: APScheduler interval tick (detect conflicts, then batch).
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from clock import clock
from config import EVALUATION_INTERVAL_MINUTES, EVALUATION_STALE_HOURS
from conflict_registry import conflict_registry
from error_handler import ErrorHandler
from evaluation_service import evaluate_decision, needs_evaluation
from events import DecisionChangeType, EventBus
from logging_config import get_logger, log_error

logger = get_logger(__name__)

# committed changes that can move a decision's health
TRIGGERING_CHANGES = frozenset({
    DecisionChangeType.UPDATED,
    DecisionChangeType.CONFLICT_DETECTED,
    DecisionChangeType.CONFLICT_RESOLVED,
    DecisionChangeType.EDIT_RESOLVED,
})


@dataclass
class BatchEvaluationResult:
    evaluated: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: bool = False
    reasons: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "evaluated": self.evaluated,
            "skipped": self.skipped,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "reasons": dict(self.reasons),
        }


def dependency_order(decision_ids, edges) -> list:
    """
    Order decisions so every DEPENDS_ON target comes before its source.
    Members of a cycle keep their input order at the end.
    """
    ids = list(decision_ids)
    known = set(ids)
    upstream_count = {d: 0 for d in ids}
    downstream = {d: [] for d in ids}
    for source, target in edges:
        if source in known and target in known and source != target:
            upstream_count[source] += 1
            downstream[target].append(source)

    ready = [d for d in ids if upstream_count[d] == 0]
    ordered = []
    while ready:
        current = ready.pop(0)
        ordered.append(current)
        for dependent in downstream[current]:
            upstream_count[dependent] -= 1
            if upstream_count[dependent] == 0:
                ready.append(dependent)

    if len(ordered) < len(ids):
        placed = set(ordered)
        cyclic = [d for d in ids if d not in placed]
        logger.warning("dependency_cycle_detected", decisions=[str(d) for d in cyclic])
        ordered.extend(cyclic)
    return ordered


def _default_uow_factory():
    from infrastructure.uow import create_uow_provider
    return create_uow_provider()


async def batch_evaluate(
    force: bool = False,
    cancel_token: Optional[asyncio.Event] = None,
    uow_factory: Optional[Callable] = None,
    now=None,
    stale_hours: float = EVALUATION_STALE_HOURS
) -> BatchEvaluationResult:
    """
    Evaluate the decisions that need it.

    Callers should only refresh their view when ``evaluated > 0``.
    Per-decision failures are logged and counted; they never abort the batch.
    """
    uow_factory = uow_factory or _default_uow_factory()
    now = now or clock.now()
    result = BatchEvaluationResult()

    async with uow_factory() as uow:
        decision_ids = await uow.decisions.ids_not_retired(uow.session)
        edges = await uow.dependencies.depends_on_edges(uow.session)

    for decision_id in dependency_order(decision_ids, edges):
        if cancel_token is not None and cancel_token.is_set():
            result.cancelled = True
            logger.info("batch_evaluation_cancelled", evaluated=result.evaluated, skipped=result.skipped)
            break

        try:
            async with uow_factory() as uow:
                decision = await uow.decisions.get_for_update(uow.session, decision_id)
                if decision is None:
                    result.skipped += 1
                    continue

                needed, reason = await needs_evaluation(uow, decision, now, force=force, stale_hours=stale_hours)
                result.reasons[reason] = result.reasons.get(reason, 0) + 1
                if not needed:
                    result.skipped += 1
                    continue

                await evaluate_decision(uow, decision, now, triggered_by="scheduler", reason=reason)
            result.evaluated += 1
        except Exception as e:
            result.failed += 1
            log_error(e, {"operation": "batch_evaluate", "decision_id": str(decision_id)})

    logger.info("batch_evaluation_completed", force=force, **result.to_dict())
    return result


class EvaluationQueue:
    """
    Deduplicating evaluation queue.

    Usage:
        evaluation_queue.enqueue(decision.id)   # no-op when already pending
        await evaluation_queue.drain()          # or start() for a background worker
    """

    def __init__(self, uow_factory: Optional[Callable] = None):
        self._uow_factory = uow_factory
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pending: set = set()
        self._worker: Optional[asyncio.Task] = None
        self._listener: Optional[asyncio.Task] = None
        self._bus: Optional[EventBus] = None
        self._subscription: Optional[asyncio.Queue] = None

    @property
    def pending(self) -> set:
        return set(self._pending)

    def enqueue(self, decision_id) -> bool:
        if decision_id in self._pending:
            return False
        self._pending.add(decision_id)
        self._queue.put_nowait(decision_id)
        return True

    async def _process(self, decision_id) -> bool:
        factory = self._uow_factory or _default_uow_factory()
        now = clock.now()
        try:
            async with factory() as uow:
                decision = await uow.decisions.get_for_update(uow.session, decision_id)
                if decision is None:
                    return False
                needed, reason = await needs_evaluation(uow, decision, now)
                if not needed:
                    return False
                await evaluate_decision(uow, decision, now, triggered_by="queue", reason=reason)
            return True
        except Exception as e:
            log_error(e, {"operation": "evaluation_queue", "decision_id": str(decision_id)})
            return False
        finally:
            self._pending.discard(decision_id)

    async def drain(self) -> int:
        """Process everything currently queued; returns how many were evaluated"""
        evaluated = 0
        while not self._queue.empty():
            decision_id = self._queue.get_nowait()
            try:
                if await self._process(decision_id):
                    evaluated += 1
            finally:
                self._queue.task_done()
        return evaluated

    async def _run(self):
        while True:
            decision_id = await self._queue.get()
            try:
                await self._process(decision_id)
            finally:
                self._queue.task_done()

    async def _listen(self, subscription: asyncio.Queue):
        while True:
            event = await subscription.get()
            if event.change in TRIGGERING_CHANGES:
                self.enqueue(uuid.UUID(event.decision_id))

    def start(self, bus: Optional[EventBus] = None) -> None:
        """Start the worker; with a bus, also enqueue decisions as their changes are committed."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())
            logger.info("evaluation_queue_worker_started")
        if bus is not None and self._listener is None:
            self._bus = bus
            self._subscription = bus.subscribe()
            self._listener = asyncio.create_task(self._listen(self._subscription))

    async def stop(self) -> None:
        for task in (self._worker, self._listener):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._bus is not None and self._subscription is not None:
            self._bus.unsubscribe(self._subscription)
        self._worker = self._listener = None
        self._bus = self._subscription = None
        logger.info("evaluation_queue_worker_stopped")


evaluation_queue = EvaluationQueue()


# =============================================================================
# Periodic tick
# =============================================================================

scheduler = AsyncIOScheduler()


async def _detect(factory, detector, now) -> int:
    async with factory() as uow:
        return await detector(uow, now)


async def evaluation_tick():
    """Detect new conflicts, then evaluate whatever needs it."""
    factory = _default_uow_factory()
    now = clock.now()
    logger.info("evaluation_tick_started")

    for operation, detector in (
        ("assumption_conflict_detection", conflict_registry.detect_assumption_conflicts),
        ("decision_conflict_detection", conflict_registry.detect_decision_conflicts),
    ):
        await ErrorHandler.safe_execute_async(
            _detect(factory, detector, now),
            default=0,
            context={"operation": operation}
        )

    await batch_evaluate(force=False, uow_factory=factory, now=now)


def start_scheduler(interval_minutes: int = EVALUATION_INTERVAL_MINUTES):
    scheduler.add_job(
        evaluation_tick,
        IntervalTrigger(minutes=interval_minutes),
        id="evaluation_tick",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    if not scheduler.running:
        scheduler.start()
    logger.info("evaluation_scheduler_started", interval_minutes=interval_minutes)


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("evaluation_scheduler_stopped")
