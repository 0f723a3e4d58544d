"""
Entitlement Service - per-user subscription state and feature queries

The service owns one SubscriptionRecord per user. It maps the record to a
tier definition and answers feature and limit questions for the rest of
the application.

States:
    Free/Active --upgrade--> Premium/Active --cancel--> Premium/Cancelled
    Premium/Active or Premium/Cancelled --(end_date passes)--> Premium/Expired
    any --reset_to_free--> Free/Active

"Effective premium" (tier premium, status active, end_date not passed) is
the single source of truth for feature gates, limits and expiry display.
The stored tier alone is the nominal tier (get_current_tier).

Queries are synchronous. Mutations are coroutines serialized per user, so
concurrent upgrade/cancel calls for one user cannot lose updates.
"""

import asyncio
import weakref
from datetime import datetime, timedelta
from typing import Optional, Callable, Union, Tuple, Any

from subscription.models import (
    SubscriptionTier,
    SubscriptionStatus,
    SubscriptionRecord,
    SubscriptionResult,
    PaymentConfirmation,
    TierDefinition,
    UsageReport,
    LimitValue,
    UNLIMITED,
    FREE_TIER,
    PREMIUM_TIER,
    get_tier_definition,
    utcnow,
)
from subscription.storage import (
    SubscriptionStore,
    FileSubscriptionStore,
    PersistenceError,
    CorruptRecordError,
    validate_user_id,
)
from subscription.payment_gateway import PaymentGateway, PaymentGatewayError, StripeGateway
from utils.logger import logger


# Fields update_subscription may change; tier, status and dates only move
# through upgrade/cancel/reset.
PASS_THROUGH_FIELDS = ("payment_method", "stripe_customer_id", "stripe_subscription_id")


class EntitlementService:
    """
    Answers entitlement questions and performs subscription transitions.

    Args:
        store: Persistence backend for subscription records
        payment_gateway: Optional provider client used to verify upgrades
            and propagate cancellations. None skips provider calls.
        premium_period_days: Length of a premium period granted by upgrade
        cancel_at_period_end: Keep the paid-through end date on cancel
            instead of ending premium immediately
        upgrade_timeout: Seconds to wait for the payment provider
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        store: SubscriptionStore,
        payment_gateway: Optional[PaymentGateway] = None,
        premium_period_days: int = 30,
        cancel_at_period_end: bool = False,
        upgrade_timeout: float = 15.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.payment_gateway = payment_gateway
        self.premium_period_days = premium_period_days
        self.cancel_at_period_end = cancel_at_period_end
        self.upgrade_timeout = upgrade_timeout
        self._clock = clock
        # Entries drop out once no coroutine holds or awaits the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _now(self) -> datetime:
        return self._clock()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    # ========== Loading ==========

    def get_subscription(self, user_id: str) -> SubscriptionRecord:
        """
        Load a user's subscription record.

        A user with no stored record gets a fresh Free/Active record, which is
        persisted. Corrupt or malformed stored data is treated as no
        subscription: the default record is returned but not written, so the
        bad document stays in place until the next successful mutation.
        """
        validate_user_id(user_id)

        try:
            data = self.store.load(user_id)
        except CorruptRecordError as e:
            logger.warning(f"Ignoring unreadable subscription for {user_id}: {e}")
            return SubscriptionRecord.default(self._now())

        if data is not None:
            try:
                return SubscriptionRecord.from_dict(data)
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Ignoring malformed subscription for {user_id}: {e}")
                return SubscriptionRecord.default(self._now())

        record = SubscriptionRecord.default(self._now())
        try:
            self.store.save(user_id, record.to_dict())
            logger.info(f"Created free subscription for {user_id}")
        except PersistenceError as e:
            # Reads recover: the user still gets the free tier
            logger.warning(f"Could not persist default subscription for {user_id}: {e.message}")
        return record

    # ========== Tier queries ==========

    def get_current_tier(self, user_id: str) -> TierDefinition:
        """Nominal tier from the stored tier field, ignoring status and expiry"""
        record = self.get_subscription(user_id)
        return get_tier_definition(record.tier)

    def _is_effectively_premium(self, record: SubscriptionRecord, now: datetime) -> bool:
        if record.tier != SubscriptionTier.PREMIUM:
            return False
        if record.is_expired(now):
            return False
        if record.status == SubscriptionStatus.ACTIVE:
            return True
        # Cancelled but paid through end_date
        return (
            self.cancel_at_period_end
            and record.status == SubscriptionStatus.CANCELLED
            and record.end_date is not None
        )

    def is_effectively_premium(self, user_id: str) -> bool:
        """Premium after accounting for cancellation and expiry"""
        record = self.get_subscription(user_id)
        return self._is_effectively_premium(record, self._now())

    def get_effective_tier(self, user_id: str) -> TierDefinition:
        """Tier definition that feature and limit checks are evaluated against"""
        return PREMIUM_TIER if self.is_effectively_premium(user_id) else FREE_TIER

    def is_subscription_active(self, user_id: str) -> bool:
        """Status is active and end_date (if any) has not passed, for any tier"""
        record = self.get_subscription(user_id)
        if record.status != SubscriptionStatus.ACTIVE:
            return False
        return not record.is_expired(self._now())

    def days_until_expiry(self, user_id: str) -> Optional[int]:
        """Days until end_date rounded up, floored at 0. None without an end_date."""
        record = self.get_subscription(user_id)
        return record.days_until_expiry(self._now())

    # ========== Feature & limit queries ==========

    def has_feature(self, user_id: str, feature_name: str) -> bool:
        """
        Check a feature against the effective tier.

        Raises:
            UnknownEntitlementError: feature_name is not in the catalogue
        """
        return self.get_effective_tier(user_id).has_feature(feature_name)

    def get_feature_limit(self, user_id: str, limit_name: str) -> LimitValue:
        """Limit value (int or "unlimited") for the effective tier"""
        return self.get_effective_tier(user_id).limit(limit_name)

    def is_within_limit(self, user_id: str, limit_name: str, current_usage: int) -> bool:
        """
        True if one more item may be added.

        A limit of N allows adding items while fewer than N exist, so at
        current_usage == N the answer is False.
        """
        limit = self.get_feature_limit(user_id, limit_name)
        if limit == UNLIMITED:
            return True
        return current_usage < limit

    def get_usage(self, user_id: str, limit_name: str, current_usage: int) -> UsageReport:
        """Usage summary for a limited resource"""
        limit = self.get_feature_limit(user_id, limit_name)
        return UsageReport.build(limit_name, limit, current_usage)

    def supports_language(self, user_id: str, language_code: str) -> bool:
        return language_code.lower() in self.get_effective_tier(user_id).languages

    def get_status(self, user_id: str) -> dict:
        """Everything the UI needs to render subscription state, from one load"""
        record = self.get_subscription(user_id)
        now = self._now()
        is_premium = self._is_effectively_premium(record, now)
        effective = PREMIUM_TIER if is_premium else FREE_TIER

        return {
            'user_id': user_id,
            'subscription': record.to_dict(),
            'tier': get_tier_definition(record.tier).id.value,
            'effective_tier': effective.id.value,
            'is_premium': is_premium,
            'is_active': record.status == SubscriptionStatus.ACTIVE and not record.is_expired(now),
            'days_until_expiry': record.days_until_expiry(now),
            'features': {name: effective.has_feature(name) for name in effective.features},
            'limits': dict(effective.limits),
            'languages': sorted(effective.languages),
        }

    # ========== Mutations ==========

    def _persist(self, user_id: str, record: SubscriptionRecord, action: str) -> SubscriptionResult:
        try:
            self.store.save(user_id, record.to_dict())
        except PersistenceError as e:
            logger.error(f"Subscription {action} failed for {user_id}: {e.message}")
            return SubscriptionResult.failure(f"Failed to {action} subscription", server_error=True)

        logger.info(
            f"Subscription {action} for {user_id}: tier={record.tier.value} "
            f"status={record.status.value} end_date={record.end_date}"
        )
        return SubscriptionResult.ok(record)

    async def _call_gateway(
        self, awaitable, action: str, user_id: str
    ) -> Tuple[Any, Optional[SubscriptionResult]]:
        """
        Await a provider call under the upgrade timeout.

        Returns (value, None) on success or (None, failure_result).
        """
        try:
            return await asyncio.wait_for(awaitable, timeout=self.upgrade_timeout), None
        except asyncio.TimeoutError:
            logger.warning(f"Payment provider timed out during {action} for {user_id}")
            return None, SubscriptionResult.failure(
                "Payment provider timed out. Please try again.", retryable=True
            )
        except PaymentGatewayError as e:
            logger.error(f"Payment provider rejected {action} for {user_id}: {e.message}")
            return None, SubscriptionResult.failure(e.message, retryable=e.retryable)

    async def upgrade(
        self,
        user_id: str,
        confirmation: Union[PaymentConfirmation, dict, None] = None,
    ) -> SubscriptionResult:
        """
        Grant premium for one period starting now.

        Not idempotent: a second call restarts the period from now instead
        of extending it. With a payment gateway, the confirmation must
        verify before anything changes; timeouts come back retryable.
        """
        validate_user_id(user_id)
        if isinstance(confirmation, dict):
            confirmation = PaymentConfirmation.from_dict(confirmation)
        confirmation = confirmation or PaymentConfirmation()

        async with self._lock_for(user_id):
            if self.payment_gateway is not None:
                confirmation, failure = await self._call_gateway(
                    self.payment_gateway.verify_payment(confirmation), "upgrade", user_id
                )
                if failure:
                    return failure

            now = self._now()
            record = self.get_subscription(user_id).copy_with(
                tier=SubscriptionTier.PREMIUM,
                status=SubscriptionStatus.ACTIVE,
                start_date=now,
                end_date=now + timedelta(days=self.premium_period_days),
                payment_method=confirmation.payment_method,
                stripe_customer_id=confirmation.customer_id,
                stripe_subscription_id=confirmation.subscription_id,
            )
            return self._persist(user_id, record, "upgrade")

    async def cancel(self, user_id: str) -> SubscriptionResult:
        """
        Cancel the subscription, keeping the tier field.

        By default premium ends immediately (end_date = now). With
        cancel_at_period_end the existing end_date is kept. Cancelling an
        already cancelled subscription returns it unchanged.
        """
        validate_user_id(user_id)

        async with self._lock_for(user_id):
            record = self.get_subscription(user_id)
            if record.status == SubscriptionStatus.CANCELLED:
                return SubscriptionResult.ok(record)

            if self.payment_gateway is not None and record.stripe_subscription_id:
                _, failure = await self._call_gateway(
                    self.payment_gateway.cancel_subscription(
                        record.stripe_subscription_id, self.cancel_at_period_end
                    ),
                    "cancel",
                    user_id,
                )
                if failure:
                    return failure

            now = self._now()
            if self.cancel_at_period_end and record.end_date is not None:
                end_date = record.end_date
            else:
                end_date = now

            record = record.copy_with(status=SubscriptionStatus.CANCELLED, end_date=end_date)
            return self._persist(user_id, record, "cancel")

    async def update_subscription(self, user_id: str, **changes) -> SubscriptionResult:
        """Merge pass-through payment fields into the record"""
        validate_user_id(user_id)

        invalid = sorted(set(changes) - set(PASS_THROUGH_FIELDS))
        if invalid:
            return SubscriptionResult.failure(f"Cannot update fields: {', '.join(invalid)}")

        async with self._lock_for(user_id):
            record = self.get_subscription(user_id).copy_with(**changes)
            return self._persist(user_id, record, "update")

    async def reset_to_free(self, user_id: str) -> SubscriptionResult:
        """Replace the record with a fresh Free/Active one"""
        validate_user_id(user_id)

        async with self._lock_for(user_id):
            record = SubscriptionRecord.default(self._now())
            return self._persist(user_id, record, "reset")


# Global entitlement service instance
_entitlement_service: Optional[EntitlementService] = None


def create_entitlement_service(app_settings=None) -> EntitlementService:
    """Build a service from application settings"""
    if app_settings is None:
        from config import settings as app_settings

    gateway = None
    if app_settings.PAYMENTS_API_BASE_URL:
        gateway = StripeGateway(
            api_base_url=app_settings.PAYMENTS_API_BASE_URL,
            api_key=app_settings.PAYMENTS_API_KEY,
            timeout=app_settings.UPGRADE_TIMEOUT_SECONDS,
        )

    return EntitlementService(
        store=FileSubscriptionStore(app_settings.STORAGE_DIR),
        payment_gateway=gateway,
        premium_period_days=app_settings.PREMIUM_PERIOD_DAYS,
        cancel_at_period_end=app_settings.CANCEL_AT_PERIOD_END,
        upgrade_timeout=app_settings.UPGRADE_TIMEOUT_SECONDS,
    )


def get_entitlement_service() -> EntitlementService:
    """Get the global entitlement service instance"""
    global _entitlement_service
    if _entitlement_service is None:
        _entitlement_service = create_entitlement_service()
    return _entitlement_service


def set_entitlement_service(service: Optional[EntitlementService]) -> None:
    """Replace the global instance (None resets to lazy creation)"""
    global _entitlement_service
    _entitlement_service = service
