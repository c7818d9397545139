from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from typing import TypeVar

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from subledger.core.clock import Clock, SystemClock
from subledger.db.repo.subscriptions_repo import SubscriptionsRepo
from subledger.db.repo.transactions_repo import TransactionsRepo
from subledger.economy.subscriptions.events import (
    EVENT_EXPIRED,
    EVENT_PRESENCE,
    EVENT_PURCHASED,
    EVENT_RENEWED,
    EVENT_WARNING,
    LifecycleEvent,
)
from subledger.services.notifications import NotificationSink

logger = structlog.get_logger(__name__)

EFFECT_GRANT_ROLE = "grant_role"
EFFECT_NOTIFY_PURCHASED = "notify_purchased"
EFFECT_NOTIFY_TRANSACTION = "notify_transaction"
EFFECT_REFRESH_PRESENCE = "refresh_presence"
EFFECT_DELETE_TRANSACTION = "delete_transaction"
EFFECT_PRUNE_TRANSACTION = "prune_transaction"
EFFECT_REVOKE_ROLE = "revoke_role"
EFFECT_REVOKE_SUPERSEDED_ROLE = "revoke_superseded_role"
EFFECT_NOTIFY_EXPIRED = "notify_expired"
EFFECT_NOTIFY_WARNING = "notify_expiry_warning"

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class OutboxJob:
    event: LifecycleEvent
    effects: tuple[str, ...]
    attempt: int = 1


def effects_for(event: LifecycleEvent) -> tuple[str, ...]:
    if event.kind == EVENT_PURCHASED:
        return (
            EFFECT_GRANT_ROLE,
            EFFECT_NOTIFY_PURCHASED,
            EFFECT_NOTIFY_TRANSACTION,
            EFFECT_REFRESH_PRESENCE,
            EFFECT_DELETE_TRANSACTION,
        )
    if event.kind == EVENT_RENEWED:
        return (
            EFFECT_GRANT_ROLE,
            EFFECT_REVOKE_SUPERSEDED_ROLE,
            EFFECT_NOTIFY_PURCHASED,
            EFFECT_NOTIFY_TRANSACTION,
            EFFECT_DELETE_TRANSACTION,
        )
    if event.kind == EVENT_EXPIRED:
        return (EFFECT_REVOKE_ROLE, EFFECT_NOTIFY_EXPIRED)
    if event.kind == EVENT_WARNING:
        return (EFFECT_NOTIFY_WARNING,)
    if event.kind == EVENT_PRESENCE:
        return (EFFECT_REFRESH_PRESENCE,)
    return ()


class LifecycleOutbox:
    """In-process queue of lifecycle events applied to the notification sink.

    Events are published after the ledger commit. Every event expands into
    named effects; a failing effect is retried on its own and never blocks
    its siblings.
    Retries and the transaction grace period are waited out in side tasks
    that re-enqueue the work, so the worker keeps serving the queue.
    """

    def __init__(
        self,
        *,
        sink: NotificationSink,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock | None = None,
        max_attempts: int = 3,
        retry_delay_seconds: float = 2.0,
        transaction_retention_seconds: float = 5.0,
        warning_dispatch_delay_seconds: float = 1.0,
        expired_dispatch_delay_seconds: float = 1.5,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._sink = sink
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._max_attempts = max(1, max_attempts)
        self._retry_delay_seconds = retry_delay_seconds
        self._transaction_retention_seconds = transaction_retention_seconds
        self._dispatch_delays = {
            EVENT_WARNING: warning_dispatch_delay_seconds,
            EVENT_EXPIRED: expired_dispatch_delay_seconds,
        }
        self._sleep = sleep
        self._queue: asyncio.Queue[OutboxJob] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._deferred: set[asyncio.Task[None]] = set()
        self._handlers: dict[str, Callable[[LifecycleEvent], Awaitable[None]]] = {
            EFFECT_GRANT_ROLE: self._grant_role,
            EFFECT_NOTIFY_PURCHASED: self._notify_purchased,
            EFFECT_NOTIFY_TRANSACTION: self._notify_transaction,
            EFFECT_REFRESH_PRESENCE: self._refresh_presence,
            EFFECT_DELETE_TRANSACTION: self._schedule_transaction_prune,
            EFFECT_PRUNE_TRANSACTION: self._prune_transaction,
            EFFECT_REVOKE_ROLE: self._revoke_role,
            EFFECT_REVOKE_SUPERSEDED_ROLE: self._revoke_superseded_role,
            EFFECT_NOTIFY_EXPIRED: self._notify_expired,
            EFFECT_NOTIFY_WARNING: self._notify_warning,
        }
        self.counters: dict[str, int] = {
            "published": 0,
            "dispatched": 0,
            "effect_failures": 0,
            "retried": 0,
            "dropped": 0,
        }

    @property
    def pending(self) -> int:
        return self._queue.qsize() + len(self._waiting_tasks())

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def publish(self, event: LifecycleEvent) -> None:
        effects = effects_for(event)
        if not effects:
            logger.warning("lifecycle_event_ignored", kind=event.kind)
            return
        self._queue.put_nowait(OutboxJob(event=event, effects=effects))
        self.counters["published"] += 1

    async def drain(self) -> int:
        processed = 0
        while True:
            while not self._queue.empty():
                job = self._queue.get_nowait()
                try:
                    await self._process(job)
                finally:
                    self._queue.task_done()
                processed += 1
            waiting = self._waiting_tasks()
            if not waiting:
                return processed
            await asyncio.gather(*waiting)

    def start(self) -> None:
        if self.is_running:
            return
        self._worker = asyncio.create_task(self._run(), name="lifecycle-outbox")

    async def stop(self) -> None:
        worker, self._worker = self._worker, None
        if worker is None:
            return
        worker.cancel()
        with suppress(asyncio.CancelledError):
            await worker
        waiting = self._waiting_tasks()
        for task in waiting:
            task.cancel()
        if waiting:
            await asyncio.gather(*waiting, return_exceptions=True)
            logger.warning("lifecycle_outbox_deferred_cancelled", cancelled=len(waiting))
        if not self._queue.empty():
            logger.warning("lifecycle_outbox_stopped_with_pending", pending=self._queue.qsize())

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._process(job)
            finally:
                self._queue.task_done()

    def _waiting_tasks(self) -> list[asyncio.Task[None]]:
        return [task for task in self._deferred if not task.done()]

    def _defer(self, job: OutboxJob, delay_seconds: float) -> None:
        if delay_seconds <= 0:
            self._queue.put_nowait(job)
            return
        task = asyncio.create_task(self._enqueue_after(job, delay_seconds))
        self._deferred.add(task)
        task.add_done_callback(self._deferred.discard)

    async def _enqueue_after(self, job: OutboxJob, delay_seconds: float) -> None:
        await self._sleep(delay_seconds)
        self._queue.put_nowait(job)

    async def _process(self, job: OutboxJob) -> None:
        failed: list[str] = []
        for effect in job.effects:
            try:
                await self._handlers[effect](job.event)
            except Exception:
                self.counters["effect_failures"] += 1
                failed.append(effect)
                logger.exception(
                    "lifecycle_effect_failed",
                    kind=job.event.kind,
                    effect=effect,
                    attempt=job.attempt,
                    subscription_id=_subscription_id(job.event),
                )
        self.counters["dispatched"] += 1

        if failed:
            if job.attempt < self._max_attempts:
                self.counters["retried"] += len(failed)
                self._defer(
                    OutboxJob(event=job.event, effects=tuple(failed), attempt=job.attempt + 1),
                    self._retry_delay_seconds,
                )
            else:
                self.counters["dropped"] += len(failed)
                logger.error(
                    "lifecycle_effect_dropped",
                    kind=job.event.kind,
                    effects=failed,
                    attempts=job.attempt,
                    subscription_id=_subscription_id(job.event),
                )

        delay = self._dispatch_delays.get(job.event.kind, 0)
        if job.attempt == 1 and delay > 0:
            await self._sleep(delay)

    async def _grant_role(self, event: LifecycleEvent) -> None:
        subscription = _require(event.subscription, "subscription")
        plan = _require(event.plan, "plan")
        await self._sink.grant_role(subscription.user_id, plan.granted_role_id)

    async def _notify_purchased(self, event: LifecycleEvent) -> None:
        await self._sink.notify_purchased(
            user=_require(event.user, "user"),
            plan=_require(event.plan, "plan"),
            subscription=_require(event.subscription, "subscription"),
            is_renewal=event.is_renewal,
        )

    async def _notify_transaction(self, event: LifecycleEvent) -> None:
        await self._sink.notify_transaction(
            user=_require(event.user, "user"),
            plan=_require(event.plan, "plan"),
            transaction=_require(event.transaction, "transaction"),
        )

    async def _refresh_presence(self, event: LifecycleEvent) -> None:
        await self._sink.refresh_presence()

    async def _schedule_transaction_prune(self, event: LifecycleEvent) -> None:
        transaction = _require(event.transaction, "transaction")
        elapsed = (self._clock.now() - transaction.created_at).total_seconds()
        self._defer(
            OutboxJob(event=event, effects=(EFFECT_PRUNE_TRANSACTION,)),
            self._transaction_retention_seconds - elapsed,
        )

    async def _prune_transaction(self, event: LifecycleEvent) -> None:
        transaction = _require(event.transaction, "transaction")
        async with self._session_factory.begin() as session:
            deleted = await TransactionsRepo.delete_by_id(session, transaction.id)
        logger.info(
            "transaction_record_pruned",
            transaction_id=str(transaction.id),
            deleted=deleted,
        )

    async def _revoke_superseded_role(self, event: LifecycleEvent) -> None:
        role_id = event.superseded_role_id
        if role_id is None:
            return
        subscription = _require(event.subscription, "subscription")
        async with self._session_factory() as session:
            still_granted = await SubscriptionsRepo.has_other_active_with_role(
                session,
                user_id=subscription.user_id,
                role_id=role_id,
                exclude_subscription_id=subscription.id,
                now_utc=self._clock.now(),
            )
        if still_granted:
            logger.info(
                "role_revoke_skipped",
                reason="role_held_by_other_subscription",
                subscription_id=str(subscription.id),
                user_id=subscription.user_id,
            )
            return
        await self._sink.revoke_role(subscription.user_id, role_id)

    async def _revoke_role(self, event: LifecycleEvent) -> None:
        subscription = _require(event.subscription, "subscription")
        async with self._session_factory() as session:
            still_granted = await SubscriptionsRepo.has_other_active_with_role(
                session,
                user_id=subscription.user_id,
                role_id=subscription.granted_role_id,
                exclude_subscription_id=subscription.id,
                now_utc=self._clock.now(),
            )
        if still_granted:
            logger.info(
                "role_revoke_skipped",
                reason="role_held_by_other_subscription",
                subscription_id=str(subscription.id),
                user_id=subscription.user_id,
            )
            return
        await self._sink.revoke_role(subscription.user_id, subscription.granted_role_id)

    async def _notify_expired(self, event: LifecycleEvent) -> None:
        await self._sink.notify_expired(_require(event.subscription, "subscription"))

    async def _notify_warning(self, event: LifecycleEvent) -> None:
        await self._sink.notify_expiry_warning(_require(event.subscription, "subscription"))


def _require(value: T | None, name: str) -> T:
    if value is None:
        raise ValueError(f"lifecycle event is missing {name}")
    return value


def _subscription_id(event: LifecycleEvent) -> str | None:
    return str(event.subscription.id) if event.subscription is not None else None
