from __future__ import annotations

import structlog
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from subledger.core.clock import Clock, SystemClock
from subledger.db.repo.transactions_repo import TransactionsRepo
from subledger.economy.subscriptions.catalog import CatalogProvider
from subledger.economy.subscriptions.errors import (
    DuplicateTransactionError,
    PlanNotFoundError,
    TransientStoreError,
)
from subledger.economy.subscriptions.events import EventPublisher, purchase_event
from subledger.economy.subscriptions.pricing import calculate_price
from subledger.economy.subscriptions.service import SubscriptionService
from subledger.economy.subscriptions.types import PurchaseResult

logger = structlog.get_logger(__name__)


class PurchaseEngine:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: CatalogProvider,
        publisher: EventPublisher,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._catalog = catalog
        self._publisher = publisher
        self._clock = clock or SystemClock()

    async def purchase(self, *, user_id: int, plan_id: str, idempotency_key: str) -> PurchaseResult:
        plan = self._catalog.get_plan(plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)
        price = calculate_price(plan)

        if await self._idempotency_key_exists(idempotency_key):
            raise DuplicateTransactionError(idempotency_key)

        now_utc = self._clock.now()
        try:
            async with self._session_factory.begin() as session:
                result = await SubscriptionService.apply_purchase(
                    session,
                    user_id=user_id,
                    plan=plan,
                    price=price,
                    idempotency_key=idempotency_key,
                    now_utc=now_utc,
                )
        except IntegrityError as exc:
            # A concurrent request with the same key won the unique constraint.
            if await self._idempotency_key_exists(idempotency_key):
                raise DuplicateTransactionError(idempotency_key) from exc
            logger.exception(
                "subscription_purchase_integrity_error",
                user_id=user_id,
                plan_id=plan_id,
            )
            raise TransientStoreError("purchase could not be stored") from exc
        except DBAPIError as exc:
            logger.exception(
                "subscription_purchase_store_failed",
                user_id=user_id,
                plan_id=plan_id,
            )
            raise TransientStoreError("purchase could not be stored") from exc

        logger.info(
            "subscription_purchase_committed",
            user_id=user_id,
            plan_id=plan.id,
            subscription_id=str(result.subscription.id),
            transaction_id=str(result.transaction.id),
            final_price=str(result.final_price),
            balance_after=str(result.transaction.balance_after),
            is_renewal=result.is_renewal,
            expires_at=result.subscription.expires_at.isoformat(),
        )
        self._publisher.publish(purchase_event(result, plan=plan, occurred_at=now_utc))
        return result

    async def _idempotency_key_exists(self, idempotency_key: str) -> bool:
        try:
            async with self._session_factory() as session:
                existing = await TransactionsRepo.get_by_idempotency_key(session, idempotency_key)
        except DBAPIError as exc:
            raise TransientStoreError("idempotency lookup failed") from exc
        return existing is not None
