from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime, time, timedelta
from functools import partial
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from subledger.core.clock import UTC, ensure_utc
from subledger.db.models.subscriptions import (
    SUBSCRIPTION_STATUS_ACTIVE,
    SUBSCRIPTION_STATUS_EXPIRED,
)
from subledger.db.repo.subscriptions_repo import SubscriptionsRepo, SweepCursor
from subledger.economy.subscriptions.events import (
    EventPublisher,
    expired_event,
    presence_event,
    warning_event,
)
from subledger.economy.subscriptions.service.constants import WARNING_WINDOW_DAYS
from subledger.economy.subscriptions.types import SubscriptionSnapshot

logger = structlog.get_logger(__name__)

DEFAULT_SWEEP_BATCH_SIZE = 500

CandidatePageFetcher = Callable[..., Awaitable[list[SweepCursor]]]


def warning_window_end(now_utc: datetime) -> datetime:
    """End of the next UTC calendar day.

    Anchoring to calendar days keeps the candidate set stable across the runs
    of one day, so the warning flag is the only thing deciding re-sends.
    """
    today = ensure_utc(now_utc).date()
    return datetime.combine(today + timedelta(days=WARNING_WINDOW_DAYS), time.min, tzinfo=UTC)


class ExpirySweeper:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: EventPublisher,
        batch_size: int = DEFAULT_SWEEP_BATCH_SIZE,
    ) -> None:
        self._session_factory = session_factory
        self._publisher = publisher
        self._batch_size = max(1, batch_size)

    async def _candidate_pages(self, fetch_page: CandidatePageFetcher) -> AsyncIterator[list[UUID]]:
        """Yield candidate ids page by page, keyset-ordered on (expires_at, id).

        Paging resumes after the last row seen, so rows left untouched by a
        failure are not fetched again within the same pass.
        """
        after: SweepCursor | None = None
        while True:
            async with self._session_factory() as session:
                page = await fetch_page(session, limit=self._batch_size, after=after)
            if page:
                yield [subscription_id for _, subscription_id in page]
            if len(page) < self._batch_size:
                return
            after = page[-1]

    async def _warn_single(
        self,
        subscription_id: UUID,
        *,
        now_utc: datetime,
        window_end_utc: datetime,
    ) -> tuple[str, SubscriptionSnapshot | None]:
        async with self._session_factory.begin() as session:
            subscription = await SubscriptionsRepo.get_by_id_for_update(session, subscription_id)
            if subscription is None:
                return "missing", None
            if (
                subscription.status != SUBSCRIPTION_STATUS_ACTIVE
                or subscription.warning_sent
                or not now_utc < subscription.expires_at <= window_end_utc
            ):
                return "skipped", None

            subscription.warning_sent = True
            subscription.warning_sent_at = now_utc
            subscription.updated_at = now_utc
            snapshot = SubscriptionSnapshot.from_model(subscription)
        return "warned", snapshot

    async def send_expiry_warnings(self, *, now_utc: datetime) -> dict[str, int]:
        window_end_utc = warning_window_end(now_utc)
        summary: dict[str, int] = {
            "examined": 0,
            "warned": 0,
            "skipped": 0,
            "missing": 0,
            "errors": 0,
        }
        fetch_page = partial(
            SubscriptionsRepo.list_warning_candidates,
            now_utc=now_utc,
            window_end_utc=window_end_utc,
        )
        async for candidate_ids in self._candidate_pages(fetch_page):
            summary["examined"] += len(candidate_ids)
            for subscription_id in candidate_ids:
                try:
                    outcome, snapshot = await self._warn_single(
                        subscription_id,
                        now_utc=now_utc,
                        window_end_utc=window_end_utc,
                    )
                except Exception:
                    summary["errors"] += 1
                    logger.exception("expiry_warning_error", subscription_id=str(subscription_id))
                    continue

                summary[outcome] += 1
                if snapshot is not None:
                    logger.info(
                        "expiry_warning_marked",
                        subscription_id=str(snapshot.id),
                        user_id=snapshot.user_id,
                        expires_at=snapshot.expires_at.isoformat(),
                    )
                    self._publisher.publish(warning_event(snapshot, occurred_at=now_utc))

        logger.info("subscription_sweep_finished", pass_name="warning", **summary)
        return summary

    async def _expire_single(
        self,
        subscription_id: UUID,
        *,
        now_utc: datetime,
    ) -> tuple[str, SubscriptionSnapshot | None]:
        async with self._session_factory.begin() as session:
            subscription = await SubscriptionsRepo.get_by_id_for_update(session, subscription_id)
            if subscription is None:
                return "missing", None
            if (
                subscription.status != SUBSCRIPTION_STATUS_ACTIVE
                or subscription.expires_at >= now_utc
            ):
                return "skipped", None

            subscription.status = SUBSCRIPTION_STATUS_EXPIRED
            subscription.expired_at = now_utc
            subscription.updated_at = now_utc
            snapshot = SubscriptionSnapshot.from_model(subscription)
        return "expired", snapshot

    async def expire_due_subscriptions(self, *, now_utc: datetime) -> dict[str, int]:
        summary: dict[str, int] = {
            "examined": 0,
            "expired": 0,
            "skipped": 0,
            "missing": 0,
            "errors": 0,
        }
        fetch_page = partial(SubscriptionsRepo.list_expiry_candidates, now_utc=now_utc)
        async for candidate_ids in self._candidate_pages(fetch_page):
            summary["examined"] += len(candidate_ids)
            for subscription_id in candidate_ids:
                try:
                    outcome, snapshot = await self._expire_single(subscription_id, now_utc=now_utc)
                except Exception:
                    summary["errors"] += 1
                    logger.exception("subscription_expiry_error", subscription_id=str(subscription_id))
                    continue

                summary[outcome] += 1
                if snapshot is not None:
                    logger.info(
                        "subscription_expired",
                        subscription_id=str(snapshot.id),
                        user_id=snapshot.user_id,
                        expires_at=snapshot.expires_at.isoformat(),
                    )
                    self._publisher.publish(expired_event(snapshot, occurred_at=now_utc))

        logger.info("subscription_sweep_finished", pass_name="expiry", **summary)
        return summary

    async def run_periodic(self, *, now_utc: datetime) -> dict[str, dict[str, int]]:
        warnings = await self.send_expiry_warnings(now_utc=now_utc)
        expiries = await self.expire_due_subscriptions(now_utc=now_utc)
        self._publish_presence_if_changed(expiries, now_utc=now_utc, reason="periodic")
        return {"warning": warnings, "expiry": expiries}

    async def run_recovery(self, *, now_utc: datetime) -> dict[str, dict[str, int]]:
        expiries = await self.expire_due_subscriptions(now_utc=now_utc)
        warnings = await self.send_expiry_warnings(now_utc=now_utc)
        self._publish_presence_if_changed(expiries, now_utc=now_utc, reason="recovery")
        return {"expiry": expiries, "warning": warnings}

    def _publish_presence_if_changed(
        self,
        expiries: dict[str, int],
        *,
        now_utc: datetime,
        reason: str,
    ) -> None:
        if expiries["expired"] > 0:
            self._publisher.publish(presence_event(occurred_at=now_utc, reason=reason))
