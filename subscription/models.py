"""
Subscription Data Models

Defines the tier catalogue (Free, Premium) and the per-user subscription
record that the entitlement service persists.
"""

from enum import Enum
from dataclasses import dataclass, field, replace
from typing import Optional, Dict, FrozenSet, Union, Any
from datetime import datetime, timedelta, timezone


UNLIMITED = "unlimited"

LimitValue = Union[int, str]

SCHEMA_VERSION = 1


def utcnow() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a stored timestamp.

    Accepts ISO-8601 strings (including the JavaScript 'Z' suffix) and
    datetime objects. Naive values are taken to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class UnknownEntitlementError(KeyError):
    """Raised when a feature or limit name is not part of the tier catalogue"""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"Unknown {kind} '{name}'")

    def __str__(self) -> str:
        return self.args[0]


class SubscriptionTier(str, Enum):
    """Subscription tiers"""
    FREE = "free"
    PREMIUM = "premium"


class SubscriptionStatus(str, Enum):
    """Subscription status states"""
    ACTIVE = "active"
    CANCELLED = "cancelled"


class FeatureLevel(str, Enum):
    """Access level of a single feature within a tier"""
    DISABLED = "disabled"
    ENABLED = "enabled"
    UNLIMITED = "unlimited"

    @property
    def is_granted(self) -> bool:
        return self in (FeatureLevel.ENABLED, FeatureLevel.UNLIMITED)


# Feature and limit vocabulary shared with the rest of the application
FEATURE_NAMES = (
    "stateGuides",
    "basicScripts",
    "localRecording",
    "basicAlerts",
    "languages",
    "cloudStorage",
    "advancedScripts",
    "multipleStates",
    "encounterCards",
    "prioritySupport",
)

LIMIT_NAMES = (
    "recordings",
    "emergencyContacts",
    "stateGuides",
)


@dataclass(frozen=True)
class TierDefinition:
    """
    A named bundle of feature levels and usage limits.

    Only two instances exist (FREE_TIER and PREMIUM_TIER). Lookups of names
    outside the catalogue raise UnknownEntitlementError.
    """
    id: SubscriptionTier
    name: str
    price: float
    features: Dict[str, FeatureLevel]
    limits: Dict[str, LimitValue]
    languages: FrozenSet[str] = frozenset({"en"})

    def feature_level(self, feature_name: str) -> FeatureLevel:
        try:
            return self.features[feature_name]
        except KeyError:
            raise UnknownEntitlementError("feature", feature_name) from None

    def limit(self, limit_name: str) -> LimitValue:
        try:
            return self.limits[limit_name]
        except KeyError:
            raise UnknownEntitlementError("limit", limit_name) from None

    def has_feature(self, feature_name: str) -> bool:
        return self.feature_level(feature_name).is_granted

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization"""
        return {
            'id': self.id.value,
            'name': self.name,
            'price': self.price,
            'features': {name: level.value for name, level in self.features.items()},
            'limits': dict(self.limits),
            'languages': sorted(self.languages),
        }


FREE_TIER = TierDefinition(
    id=SubscriptionTier.FREE,
    name="Free",
    price=0,
    features={
        "stateGuides": FeatureLevel.ENABLED,  # primary state only, see limits
        "basicScripts": FeatureLevel.ENABLED,
        "localRecording": FeatureLevel.ENABLED,
        "basicAlerts": FeatureLevel.ENABLED,
        "languages": FeatureLevel.ENABLED,
        "cloudStorage": FeatureLevel.DISABLED,
        "advancedScripts": FeatureLevel.DISABLED,
        "multipleStates": FeatureLevel.DISABLED,
        "encounterCards": FeatureLevel.DISABLED,
        "prioritySupport": FeatureLevel.DISABLED,
    },
    limits={
        "recordings": 5,
        "emergencyContacts": 2,
        "stateGuides": 1,
    },
    languages=frozenset({"en"}),
)

PREMIUM_TIER = TierDefinition(
    id=SubscriptionTier.PREMIUM,
    name="Premium",
    price=4.99,
    features={
        "stateGuides": FeatureLevel.UNLIMITED,
        "basicScripts": FeatureLevel.ENABLED,
        "localRecording": FeatureLevel.ENABLED,
        "basicAlerts": FeatureLevel.ENABLED,
        "languages": FeatureLevel.ENABLED,
        "cloudStorage": FeatureLevel.ENABLED,
        "advancedScripts": FeatureLevel.ENABLED,
        "multipleStates": FeatureLevel.ENABLED,
        "encounterCards": FeatureLevel.ENABLED,
        "prioritySupport": FeatureLevel.ENABLED,
    },
    limits={
        "recordings": UNLIMITED,
        "emergencyContacts": 10,
        "stateGuides": UNLIMITED,
    },
    languages=frozenset({"en", "es"}),
)

TIER_DEFINITIONS: Dict[SubscriptionTier, TierDefinition] = {
    SubscriptionTier.FREE: FREE_TIER,
    SubscriptionTier.PREMIUM: PREMIUM_TIER,
}


def get_tier_definition(tier: SubscriptionTier) -> TierDefinition:
    """Get the tier definition for a tier id"""
    return TIER_DEFINITIONS[tier]


def _check_catalogue():
    # Every tier must define the same vocabulary
    for tier in TIER_DEFINITIONS.values():
        if set(tier.features) != set(FEATURE_NAMES):
            raise RuntimeError(f"Tier '{tier.id.value}' features do not match FEATURE_NAMES")
        if set(tier.limits) != set(LIMIT_NAMES):
            raise RuntimeError(f"Tier '{tier.id.value}' limits do not match LIMIT_NAMES")
        for name, value in tier.limits.items():
            if value != UNLIMITED and (not isinstance(value, int) or value < 0):
                raise RuntimeError(f"Tier '{tier.id.value}' limit '{name}' is invalid: {value!r}")


_check_catalogue()


@dataclass
class SubscriptionRecord:
    """
    A user's subscription record.

    The service owns this record and persists it after every change.
    Payment fields are opaque identifiers from the payment provider.
    """
    tier: SubscriptionTier = SubscriptionTier.FREE
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    start_date: datetime = field(default_factory=utcnow)
    end_date: Optional[datetime] = None

    payment_method: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None

    schema_version: int = SCHEMA_VERSION

    @classmethod
    def default(cls, now: Optional[datetime] = None) -> 'SubscriptionRecord':
        """A fresh Free/Active record"""
        return cls(start_date=now or utcnow())

    def is_expired(self, now: datetime) -> bool:
        """True once end_date has passed"""
        return self.end_date is not None and self.end_date < now

    def days_until_expiry(self, now: datetime) -> Optional[int]:
        """Whole days left until end_date, rounded up and never negative"""
        if self.end_date is None:
            return None
        remaining = self.end_date - now
        days, rest = divmod(remaining, timedelta(days=1))
        if rest:
            days += 1
        return max(0, days)

    def copy_with(self, **changes) -> 'SubscriptionRecord':
        return replace(self, **changes)

    def to_dict(self) -> dict:
        """Convert to the persisted JSON shape"""
        return {
            'tier': self.tier.value,
            'status': self.status.value,
            'startDate': format_timestamp(self.start_date),
            'endDate': format_timestamp(self.end_date),
            'paymentMethod': self.payment_method,
            'stripeCustomerId': self.stripe_customer_id,
            'stripeSubscriptionId': self.stripe_subscription_id,
            'schemaVersion': self.schema_version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'SubscriptionRecord':
        """
        Create from the persisted JSON shape.

        Raises ValueError, KeyError or TypeError for malformed data.
        Unknown keys (such as storage metadata) are ignored.
        """
        if not isinstance(data, dict):
            raise TypeError(f"Subscription data must be an object, got {type(data).__name__}")

        start_date = parse_timestamp(data['startDate'])
        if start_date is None:
            raise ValueError("Subscription data is missing startDate")

        return cls(
            tier=SubscriptionTier(data['tier']),
            status=SubscriptionStatus(data['status']),
            start_date=start_date,
            end_date=parse_timestamp(data.get('endDate')),
            payment_method=data.get('paymentMethod'),
            stripe_customer_id=data.get('stripeCustomerId'),
            stripe_subscription_id=data.get('stripeSubscriptionId'),
            schema_version=int(data.get('schemaVersion', SCHEMA_VERSION)),
        )


@dataclass
class PaymentConfirmation:
    """Proof of payment handed to the upgrade operation"""
    payment_method: str = "stripe"
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'PaymentConfirmation':
        return cls(
            payment_method=data.get('paymentMethod') or data.get('payment_method') or "stripe",
            customer_id=data.get('customerId') or data.get('customer_id'),
            subscription_id=data.get('subscriptionId') or data.get('subscription_id'),
        )


@dataclass
class SubscriptionResult:
    """
    Outcome of a mutating subscription operation.

    Failures carry a human-readable error. retryable is set for timeouts and
    transient provider errors, where the record was left unchanged.
    server_error marks failures on our side (persistence), not the caller's.
    """
    success: bool
    subscription: Optional[SubscriptionRecord] = None
    error: Optional[str] = None
    retryable: bool = False
    server_error: bool = False

    @classmethod
    def ok(cls, subscription: Optional[SubscriptionRecord] = None) -> 'SubscriptionResult':
        return cls(success=True, subscription=subscription)

    @classmethod
    def failure(cls, error: str, retryable: bool = False, server_error: bool = False) -> 'SubscriptionResult':
        return cls(success=False, error=error, retryable=retryable, server_error=server_error)

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'subscription': self.subscription.to_dict() if self.subscription else None,
            'error': self.error,
            'retryable': self.retryable,
        }


@dataclass
class UsageReport:
    """Usage of a limited resource against the current tier's limit"""
    limit_name: str
    limit: LimitValue
    current_usage: int
    is_unlimited: bool
    is_within_limit: bool
    remaining: Optional[int]  # None when unlimited
    percentage: float

    @classmethod
    def build(cls, limit_name: str, limit: LimitValue, current_usage: int) -> 'UsageReport':
        if limit == UNLIMITED:
            return cls(
                limit_name=limit_name,
                limit=limit,
                current_usage=current_usage,
                is_unlimited=True,
                is_within_limit=True,
                remaining=None,
                percentage=0.0,
            )

        if limit > 0:
            percentage = min(100.0, current_usage / limit * 100)
        else:
            percentage = 100.0

        return cls(
            limit_name=limit_name,
            limit=limit,
            current_usage=current_usage,
            is_unlimited=False,
            is_within_limit=current_usage < limit,
            remaining=max(0, limit - current_usage),
            percentage=percentage,
        )

    def to_dict(self) -> dict:
        return {
            'limit_name': self.limit_name,
            'limit': self.limit,
            'current_usage': self.current_usage,
            'is_unlimited': self.is_unlimited,
            'is_within_limit': self.is_within_limit,
            'remaining': self.remaining,
            'percentage': self.percentage,
        }


# Pricing configuration (for reference)
PRICING = {
    SubscriptionTier.FREE: {
        'price_monthly': FREE_TIER.price,
        'description': 'Your primary state guide, basic scripts and local recording',
    },
    SubscriptionTier.PREMIUM: {
        'price_monthly': PREMIUM_TIER.price,
        'description': 'All states, cloud storage, encounter cards and Spanish',
    },
}
