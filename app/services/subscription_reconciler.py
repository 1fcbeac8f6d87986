"""
Subscription Reconciler
Pulls subscription state from the payment provider into local memberships.

The provider is the source of truth for billing: a scheduled plan change is
only applied locally once the provider bills the new price. Provider calls are
made between two short transactions so the member lock is never held across
network I/O.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.conversions import as_utc, utcnow
from app.core.errors import CoreError, CurrencyMismatch, NotFound, ProviderUnavailable
from app.core.results import ServiceResult
from app.crud.creditLedgerCrud import reset_credits_for_new_period
from app.crud.membershipsCrud import (
    MembershipData,
    ScheduledChangeData,
    apply_plan,
    clear_scheduled_change,
    get_member,
    get_membership_by_subscription_id,
    get_membership_plan,
    get_plan_by_stripe_price,
    list_reconcilable_member_ids,
    membership_to_data,
    next_period_start,
    require_active_membership,
    scheduled_change_to_data,
    upsert_scheduled_change,
)
from app.services.base_service import MemberScopedService
from app.services.member_locks import MemberLocks
from app.services.payment_provider import (
    PRICE_CHANGE_SCHEDULED,
    TERMINAL_SUBSCRIPTION_STATUSES,
    PaymentProvider,
    PaymentProviderError,
    ProviderPriceChange,
    ProviderSubscription,
)

logger = logging.getLogger(__name__)

SYNC_CREATED = "created"
SYNC_UPDATED = "updated"
SYNC_UNCHANGED = "unchanged"

PLAN_CHANGE_APPLIED = "applied"
PLAN_CHANGE_SCHEDULED = "scheduled"
PLAN_CHANGE_UNCHANGED = "unchanged"


@dataclass
class SyncOutcome:
    member_id: int
    outcome: str
    changes: List[str] = field(default_factory=list)


@dataclass
class SyncError:
    member_id: int
    error_code: str
    message: str


@dataclass
class SyncReport:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: List[SyncError] = field(default_factory=list)
    processed_member_ids: List[int] = field(default_factory=list)
    timed_out: bool = False


@dataclass
class PlanChangeData:
    member_id: int
    status: str
    plan_id: Optional[int]
    plan_title: Optional[str]
    scheduled_change: Optional[ScheduledChangeData] = None


@dataclass
class _MembershipSnapshot:
    membership_id: int
    member_id: int
    subscription_id: Optional[str]
    customer_id: Optional[str]
    plan_id: Optional[int]
    plan_price_id: Optional[str]
    plan_currency: Optional[str]
    change_plan_id: Optional[int] = None
    change_price_id: Optional[str] = None
    change_confirmed: bool = False
    change_schedule_id: Optional[str] = None


@dataclass
class _ProviderState:
    """What the provider told us between the read and apply transactions"""
    subscription: Optional[ProviderSubscription] = None
    created: bool = False
    change_result: Optional[ProviderPriceChange] = None
    change_error: Optional[str] = None
    change_currency_mismatch: bool = False


class SubscriptionReconciler(MemberScopedService):

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: MemberLocks,
        provider: PaymentProvider,
        *,
        provider_timeout_seconds: float = 10.0,
        provider_max_attempts: int = 3,
        provider_backoff_seconds: float = 0.5,
        sync_concurrency: int = 5,
        sync_all_timeout_seconds: float = 300.0,
    ):
        super().__init__(session_factory, locks)
        self.provider = provider
        self.provider_timeout_seconds = provider_timeout_seconds
        self.provider_max_attempts = max(1, provider_max_attempts)
        self.provider_backoff_seconds = provider_backoff_seconds
        self.sync_concurrency = max(1, sync_concurrency)
        self.sync_all_timeout_seconds = sync_all_timeout_seconds

        # Serializes reconciler runs per member (e.g. webhook and batch sync
        # racing) without blocking ledger and booking writes during provider I/O
        worst_case = (
            provider_timeout_seconds * self.provider_max_attempts
            + provider_backoff_seconds * (2 ** self.provider_max_attempts)
        )
        self._sync_locks = MemberLocks(timeout_seconds=locks.timeout_seconds + 3 * worst_case)

    # ------------------------------------------------------------------
    # Provider calls
    # ------------------------------------------------------------------

    async def _call_provider(
        self,
        operation: str,
        func: Callable[..., Awaitable[Any]],
        *args,
        **kwargs
    ) -> Any:
        """
        Call the provider with a per-attempt timeout and exponential backoff.

        Raises ProviderUnavailable when attempts run out or the provider
        rejects the request outright.
        """
        last_error = None
        for attempt in range(1, self.provider_max_attempts + 1):
            try:
                return await asyncio.wait_for(
                    func(*args, **kwargs),
                    timeout=self.provider_timeout_seconds,
                )
            except asyncio.TimeoutError:
                last_error = f"timed out after {self.provider_timeout_seconds}s"
            except PaymentProviderError as e:
                if not e.transient:
                    raise ProviderUnavailable(operation, e.message)
                last_error = e.message

            if attempt < self.provider_max_attempts:
                delay = self.provider_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    f"Provider {operation} attempt {attempt}/{self.provider_max_attempts} "
                    f"failed ({last_error}); retrying in {delay}s"
                )
                await asyncio.sleep(delay)

        logger.error(f"Provider {operation} failed after {self.provider_max_attempts} attempts: {last_error}")
        raise ProviderUnavailable(operation, last_error)

    async def _check_currency(self, subscription: ProviderSubscription, price_id: str) -> None:
        new_price = await self._call_provider("get_price", self.provider.get_price, price_id)
        current = (subscription.currency or "").lower()
        requested = (new_price.currency or "").lower()
        if current and requested and current != requested:
            raise CurrencyMismatch(current, requested)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def _snapshot(self, member_id: int) -> _MembershipSnapshot:
        async with self.session_factory() as db:
            membership = await require_active_membership(db, member_id)
            member = await get_member(db, member_id)
            plan = membership.plan
            change = membership.scheduled_change
            return _MembershipSnapshot(
                membership_id=membership.id,
                member_id=member_id,
                subscription_id=membership.stripe_subscription_id,
                customer_id=member.stripe_customer_id if member else None,
                plan_id=membership.plan_id,
                plan_price_id=plan.stripe_price_id if plan else None,
                plan_currency=plan.currency if plan else None,
                change_plan_id=change.scheduled_plan_id if change else None,
                change_price_id=change.scheduled_stripe_price_id if change else None,
                change_confirmed=change.confirmed if change else False,
                change_schedule_id=change.provider_schedule_id if change else None,
            )

    async def _locked_membership(self, db: AsyncSession, snapshot: _MembershipSnapshot):
        membership = await require_active_membership(db, snapshot.member_id)
        if membership.id != snapshot.membership_id:
            raise NotFound("Membership", snapshot.membership_id)
        return membership

    # ------------------------------------------------------------------
    # syncOne / syncAll
    # ------------------------------------------------------------------

    async def _fetch_provider_state(self, snapshot: _MembershipSnapshot) -> _ProviderState:
        state = _ProviderState()

        if not snapshot.subscription_id:
            if snapshot.customer_id and snapshot.plan_price_id:
                state.subscription = await self._call_provider(
                    "create_subscription",
                    self.provider.create_subscription,
                    snapshot.customer_id,
                    snapshot.plan_price_id,
                )
                state.created = True
            return state

        state.subscription = await self._call_provider(
            "get_subscription", self.provider.get_subscription, snapshot.subscription_id
        )

        needs_retry = (
            snapshot.change_price_id
            and not snapshot.change_confirmed
            and state.subscription.status not in TERMINAL_SUBSCRIPTION_STATUSES
        )
        if needs_retry:
            try:
                await self._check_currency(state.subscription, snapshot.change_price_id)
                state.change_result = await self._call_provider(
                    "update_subscription_price",
                    self.provider.update_subscription_price,
                    snapshot.subscription_id,
                    snapshot.change_price_id,
                    PRICE_CHANGE_SCHEDULED,
                )
            except CurrencyMismatch as e:
                logger.warning(f"Dropping scheduled change for member {snapshot.member_id}: {e.message}")
                state.change_currency_mismatch = True
            except ProviderUnavailable as e:
                state.change_error = e.message
        return state

    async def _apply_provider_state(
        self,
        db: AsyncSession,
        snapshot: _MembershipSnapshot,
        state: _ProviderState
    ) -> SyncOutcome:
        membership = await self._locked_membership(db, snapshot)
        subscription = state.subscription
        changes: List[str] = []

        if subscription is None:
            return SyncOutcome(snapshot.member_id, SYNC_UNCHANGED)

        if state.created:
            membership.stripe_subscription_id = subscription.id
            membership.stripe_status = subscription.status
            if subscription.current_period_start:
                membership.start_date = subscription.current_period_start
            if subscription.current_period_end:
                membership.end_date = subscription.current_period_end
            membership.updated_at = utcnow()
            logger.info(f"Created subscription {subscription.id} for member {snapshot.member_id}")
            return SyncOutcome(snapshot.member_id, SYNC_CREATED, ["subscription"])

        if membership.stripe_status != subscription.status:
            changes.append("status")
            membership.stripe_status = subscription.status
            membership.updated_at = utcnow()

        if subscription.status in TERMINAL_SUBSCRIPTION_STATUSES:
            membership.is_active = False
            membership.updated_at = utcnow()
            changes.append("deactivated")
            logger.info(f"Subscription {subscription.id} is {subscription.status}; membership {membership.id} deactivated")
            return SyncOutcome(snapshot.member_id, SYNC_UPDATED, changes)

        change = membership.scheduled_change
        if change is not None and change.scheduled_stripe_price_id == snapshot.change_price_id:
            if state.change_currency_mismatch:
                await clear_scheduled_change(db, membership)
                changes.append("scheduled_change_dropped")
                change = None
            elif state.change_result is not None:
                change.confirmed = True
                change.error = None
                change.provider_schedule_id = state.change_result.schedule_id
                if state.change_result.effective_at:
                    change.scheduled_change_date = state.change_result.effective_at
                change.updated_at = utcnow()
                changes.append("scheduled_change_confirmed")
            elif state.change_error is not None:
                change.error = state.change_error
                change.attempts = (change.attempts or 0) + 1
                change.updated_at = utcnow()
                changes.append("scheduled_change_retry_failed")

        local_end = as_utc(membership.end_date)
        provider_end = subscription.current_period_end
        provider_start = subscription.current_period_start
        period_rolled = (
            local_end is not None
            and provider_end is not None
            and provider_start is not None
            and provider_start >= local_end
        )

        if period_rolled:
            if subscription.current_period_start:
                membership.start_date = subscription.current_period_start
            membership.end_date = provider_end
            changes.append("period")

            if change is not None and change.scheduled_stripe_price_id == subscription.price_id:
                scheduled_plan = await get_membership_plan(db, change.scheduled_plan_id)
                if scheduled_plan is None:
                    raise NotFound("Membership plan", change.scheduled_plan_id)
                apply_plan(membership, scheduled_plan, reset_usage=True)
                await clear_scheduled_change(db, membership)
                changes.append("scheduled_change_applied")
                logger.info(
                    f"Applied scheduled change for member {snapshot.member_id}: "
                    f"now on plan {scheduled_plan.title}"
                )
            else:
                provider_plan = await get_plan_by_stripe_price(db, subscription.price_id)
                if provider_plan is not None and provider_plan.id != membership.plan_id:
                    apply_plan(membership, provider_plan, reset_usage=True)
                    changes.append("plan")
                else:
                    credits = membership.plan.credits if membership.plan else membership.credits
                    await reset_credits_for_new_period(db, snapshot.member_id, credits, commit=False)
                changes.append("credits_reset")
                if change is not None:
                    logger.warning(
                        f"Member {snapshot.member_id} renewed on price {subscription.price_id}, "
                        f"scheduled change to {change.scheduled_stripe_price_id} still pending"
                    )
        elif provider_end is not None and provider_end != local_end:
            # Same period, different boundary: realign dates without touching usage
            membership.end_date = provider_end
            if provider_start:
                membership.start_date = provider_start
            changes.append("period")

        await db.flush()
        return SyncOutcome(snapshot.member_id, SYNC_UPDATED if changes else SYNC_UNCHANGED, changes)

    async def sync_one(self, member_id: int) -> ServiceResult[SyncOutcome]:
        try:
            async with self._sync_locks.hold(member_id):
                snapshot = await self._snapshot(member_id)
                state = await self._fetch_provider_state(snapshot)
                return await self._write(
                    member_id,
                    "sync_one",
                    lambda db: self._apply_provider_state(db, snapshot, state),
                )
        except CoreError as e:
            logger.info(f"sync_one for member {member_id} failed: {e.code} {e.message}")
            return ServiceResult.failure(e)

    async def sync_all(self) -> SyncReport:
        """Reconcile every provider-backed membership; one failure never stops the batch."""
        async with self.session_factory() as db:
            member_ids = await list_reconcilable_member_ids(db)

        report = SyncReport()
        if not member_ids:
            return report

        semaphore = asyncio.Semaphore(self.sync_concurrency)

        async def sync_member(member_id: int) -> ServiceResult[SyncOutcome]:
            async with semaphore:
                return await self.sync_one(member_id)

        tasks = {asyncio.create_task(sync_member(member_id)): member_id for member_id in member_ids}
        done, pending = await asyncio.wait(tasks.keys(), timeout=self.sync_all_timeout_seconds)

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            report.timed_out = True
            logger.warning(
                f"sync_all deadline of {self.sync_all_timeout_seconds}s reached; "
                f"{len(pending)} of {len(member_ids)} members not processed"
            )

        for task in done:
            member_id = tasks[task]
            report.processed_member_ids.append(member_id)
            error = task.exception()
            if error is not None:
                logger.error(f"sync_all: member {member_id} crashed: {error}", exc_info=error)
                report.errors.append(SyncError(member_id, "INTERNAL_ERROR", str(error)))
                continue

            result = task.result()
            if not result.ok:
                report.errors.append(SyncError(member_id, result.error.code, result.error.message))
            elif result.value.outcome == SYNC_CREATED:
                report.created += 1
            elif result.value.outcome == SYNC_UPDATED:
                report.updated += 1
            else:
                report.unchanged += 1

        report.processed_member_ids.sort()
        logger.info(
            f"sync_all finished: {report.created} created, {report.updated} updated, "
            f"{report.unchanged} unchanged, {len(report.errors)} errors"
        )
        return report

    # ------------------------------------------------------------------
    # Plan changes
    # ------------------------------------------------------------------

    async def _apply_immediately(self, member_id: int, plan_id: int) -> ServiceResult[PlanChangeData]:
        async def operation(db: AsyncSession) -> PlanChangeData:
            membership = await require_active_membership(db, member_id)
            if membership.stripe_subscription_id:
                # Subscription appeared since the snapshot; let the caller retry
                raise ProviderUnavailable("schedule_plan_change", "subscription created concurrently")
            plan = await get_membership_plan(db, plan_id)
            if plan is None:
                raise NotFound("Membership plan", plan_id)
            apply_plan(membership, plan, reset_usage=False)
            await clear_scheduled_change(db, membership)
            logger.info(f"Member {member_id} moved to plan {plan.title} immediately")
            return PlanChangeData(member_id, PLAN_CHANGE_APPLIED, plan.id, plan.title)

        return await self._write(member_id, "schedule_plan_change", operation)

    async def _store_scheduled_change(
        self,
        member_id: int,
        snapshot: _MembershipSnapshot,
        plan_id: int
    ) -> ServiceResult[ScheduledChangeData]:
        async def operation(db: AsyncSession) -> ScheduledChangeData:
            membership = await self._locked_membership(db, snapshot)
            plan = await get_membership_plan(db, plan_id)
            if plan is None:
                raise NotFound("Membership plan", plan_id)
            change = await upsert_scheduled_change(
                db, membership, plan,
                scheduled_change_date=next_period_start(membership),
            )
            return scheduled_change_to_data(change)

        return await self._write(member_id, "schedule_plan_change", operation)

    async def _record_schedule_result(
        self,
        member_id: int,
        snapshot: _MembershipSnapshot,
        price_id: str,
        change_result: Optional[ProviderPriceChange],
        error: Optional[str],
    ) -> ServiceResult[Optional[ScheduledChangeData]]:
        async def operation(db: AsyncSession) -> Optional[ScheduledChangeData]:
            membership = await self._locked_membership(db, snapshot)
            change = membership.scheduled_change
            if change is None or change.scheduled_stripe_price_id != price_id:
                # Replaced or cancelled while the provider call was in flight
                return None
            if change_result is not None:
                change.confirmed = True
                change.error = None
                change.provider_schedule_id = change_result.schedule_id
                if change_result.effective_at:
                    change.scheduled_change_date = change_result.effective_at
            else:
                change.error = error
                change.attempts = (change.attempts or 0) + 1
            change.updated_at = utcnow()
            await db.flush()
            return scheduled_change_to_data(change)

        return await self._write(member_id, "schedule_plan_change", operation)

    async def schedule_plan_change(self, member_id: int, new_plan_id: int) -> ServiceResult[PlanChangeData]:
        """
        Move the member to another plan.

        Without a provider subscription the plan applies at once. Otherwise the
        provider schedules the price for the next renewal; the local plan only
        changes when syncOne sees the provider bill it.
        """
        try:
            async with self._sync_locks.hold(member_id):
                return await self._schedule_plan_change(member_id, new_plan_id)
        except CoreError as e:
            return ServiceResult.failure(e)

    async def _schedule_plan_change(self, member_id: int, new_plan_id: int) -> ServiceResult[PlanChangeData]:
        snapshot = await self._snapshot(member_id)
        async with self.session_factory() as db:
            plan = await get_membership_plan(db, new_plan_id)
            if plan is None:
                return ServiceResult.failure(NotFound("Membership plan", new_plan_id))
            plan_title, plan_price_id, plan_currency = plan.title, plan.stripe_price_id, plan.currency

        if snapshot.plan_id == new_plan_id and snapshot.change_plan_id is None:
            return ServiceResult.success(
                PlanChangeData(member_id, PLAN_CHANGE_UNCHANGED, new_plan_id, plan_title)
            )

        if snapshot.plan_id == new_plan_id:
            # Back to the current plan: the pending change is withdrawn
            dropped = await self._drop_scheduled_change(snapshot)
            if not dropped.ok:
                return ServiceResult.failure(dropped.error)
            return ServiceResult.success(
                PlanChangeData(member_id, PLAN_CHANGE_UNCHANGED, new_plan_id, plan_title)
            )

        if not snapshot.subscription_id:
            return await self._apply_immediately(member_id, new_plan_id)

        if not plan_price_id:
            return ServiceResult.failure(NotFound("Provider price for plan", new_plan_id))

        if snapshot.change_plan_id == new_plan_id and snapshot.change_confirmed:
            async with self.session_factory() as db:
                membership = await require_active_membership(db, member_id)
                existing = membership.scheduled_change
                existing = scheduled_change_to_data(existing) if existing else None
            return ServiceResult.success(
                PlanChangeData(member_id, PLAN_CHANGE_SCHEDULED, new_plan_id, plan_title, existing)
            )

        current_currency = (snapshot.plan_currency or "").lower()
        if current_currency and plan_currency and current_currency != plan_currency.lower():
            return ServiceResult.failure(CurrencyMismatch(current_currency, plan_currency.lower()))

        change_result = None
        error: Optional[CoreError] = None
        try:
            subscription = await self._call_provider(
                "get_subscription", self.provider.get_subscription, snapshot.subscription_id
            )
            await self._check_currency(subscription, plan_price_id)
        except CurrencyMismatch as e:
            return ServiceResult.failure(e)
        except ProviderUnavailable as e:
            error = e

        stored = await self._store_scheduled_change(member_id, snapshot, new_plan_id)
        if not stored.ok:
            return ServiceResult.failure(stored.error)

        if error is None:
            try:
                change_result = await self._call_provider(
                    "update_subscription_price",
                    self.provider.update_subscription_price,
                    snapshot.subscription_id,
                    plan_price_id,
                    PRICE_CHANGE_SCHEDULED,
                )
            except ProviderUnavailable as e:
                error = e

        recorded = await self._record_schedule_result(
            member_id, snapshot, plan_price_id, change_result,
            error.message if error else None,
        )
        if error is not None:
            logger.warning(f"Plan change for member {member_id} kept unconfirmed: {error.message}")
            return ServiceResult.failure(error)
        if not recorded.ok:
            return ServiceResult.failure(recorded.error)

        logger.info(f"Scheduled plan {plan_title} for member {member_id}")
        return ServiceResult.success(
            PlanChangeData(member_id, PLAN_CHANGE_SCHEDULED, new_plan_id, plan_title, recorded.value)
        )

    async def cancel_scheduled_change(self, member_id: int) -> ServiceResult[ScheduledChangeData]:
        """Release the provider schedule, then drop the pending change."""
        try:
            async with self._sync_locks.hold(member_id):
                snapshot = await self._snapshot(member_id)
                if snapshot.change_plan_id is None:
                    return ServiceResult.failure(NotFound("Scheduled change for member", member_id))
                return await self._drop_scheduled_change(snapshot)
        except CoreError as e:
            return ServiceResult.failure(e)

    async def _drop_scheduled_change(self, snapshot: _MembershipSnapshot) -> ServiceResult[ScheduledChangeData]:
        member_id = snapshot.member_id
        if snapshot.change_schedule_id:
            await self._call_provider(
                "release_schedule", self.provider.release_schedule, snapshot.change_schedule_id
            )

        async def operation(db: AsyncSession) -> ScheduledChangeData:
            membership = await self._locked_membership(db, snapshot)
            if membership.scheduled_change is None:
                raise NotFound("Scheduled change for member", member_id)
            removed = scheduled_change_to_data(membership.scheduled_change)
            await clear_scheduled_change(db, membership)
            logger.info(f"Cancelled scheduled change for member {member_id}")
            return removed

        return await self._write(member_id, "cancel_scheduled_change", operation)

    async def cancel_membership(self, member_id: int) -> ServiceResult[MembershipData]:
        """Cancel the provider subscription and deactivate the membership."""
        try:
            async with self._sync_locks.hold(member_id):
                snapshot = await self._snapshot(member_id)
                subscription = None
                if snapshot.subscription_id:
                    subscription = await self._call_provider(
                        "cancel_subscription", self.provider.cancel_subscription, snapshot.subscription_id
                    )

                async def operation(db: AsyncSession) -> MembershipData:
                    membership = await self._locked_membership(db, snapshot)
                    membership.is_active = False
                    if subscription is not None:
                        membership.stripe_status = subscription.status
                    membership.updated_at = utcnow()
                    await db.flush()
                    logger.info(f"Membership {membership.id} for member {member_id} cancelled")
                    return membership_to_data(membership)

                return await self._write(member_id, "cancel_membership", operation)
        except CoreError as e:
            return ServiceResult.failure(e)

    async def get_membership(self, member_id: int) -> ServiceResult[MembershipData]:
        async def operation(db: AsyncSession) -> MembershipData:
            return membership_to_data(await require_active_membership(db, member_id))

        return await self._read("get_membership", operation)

    async def find_member_by_subscription(self, subscription_id: str) -> Optional[int]:
        async with self.session_factory() as db:
            membership = await get_membership_by_subscription_id(db, subscription_id)
            return membership.member_id if membership else None
