"""
Subscription & Entitlement System for Pocket Protector

Owns each user's subscription record and answers the questions the rest of
the app asks before allowing premium actions:
- Which tier is this user on, nominally and effectively?
- Is a feature available? How many recordings/contacts/state guides?
- Upgrade after payment, cancel, reset

Architecture:
- Tier catalogue (Free, Premium) is static and shared
- One JSON record per user, persisted after every change
- Payment proofs are verified with the payments backend before upgrading
- Feature gates read the effective tier, so expiry and cancellation apply
  everywhere at once
"""

from subscription.models import (
    SubscriptionTier,
    SubscriptionStatus,
    FeatureLevel,
    TierDefinition,
    SubscriptionRecord,
    SubscriptionResult,
    PaymentConfirmation,
    UsageReport,
    UnknownEntitlementError,
    UNLIMITED,
    FREE_TIER,
    PREMIUM_TIER,
    TIER_DEFINITIONS,
)
from subscription.storage import (
    SubscriptionStore,
    FileSubscriptionStore,
    MemorySubscriptionStore,
    PersistenceError,
)
from subscription.payment_gateway import (
    PaymentGateway,
    StripeGateway,
    PaymentGatewayError,
)
from subscription.entitlement_service import (
    EntitlementService,
    get_entitlement_service,
    set_entitlement_service,
)
from subscription.feature_gate import (
    FeatureGate,
    FeatureGateError,
    GateDecision,
    feature_required,
    limit_check,
)

__all__ = [
    # Tier catalogue & records
    'SubscriptionTier',
    'SubscriptionStatus',
    'FeatureLevel',
    'TierDefinition',
    'SubscriptionRecord',
    'SubscriptionResult',
    'PaymentConfirmation',
    'UsageReport',
    'UnknownEntitlementError',
    'UNLIMITED',
    'FREE_TIER',
    'PREMIUM_TIER',
    'TIER_DEFINITIONS',
    # Storage
    'SubscriptionStore',
    'FileSubscriptionStore',
    'MemorySubscriptionStore',
    'PersistenceError',
    # Payment provider
    'PaymentGateway',
    'StripeGateway',
    'PaymentGatewayError',
    # Service
    'EntitlementService',
    'get_entitlement_service',
    'set_entitlement_service',
    # Feature gating
    'FeatureGate',
    'FeatureGateError',
    'GateDecision',
    'feature_required',
    'limit_check',
]
