"""
Feature Gate System - Controls access to premium features

Implements feature gating on top of the entitlement service:
- Decorator-based access control
- Runtime feature checks with upgrade prompts
- Limit checks before adding items

Usage:
    # Decorator-based (for functions taking a user_id keyword)
    @feature_required('cloudStorage')
    async def upload_recording(recording, *, user_id):
        ...

    # Runtime check
    decision = FeatureGate().check_feature(user_id, 'encounterCards')
    if decision.needs_upgrade:
        show_upgrade_prompt(decision.message)

    # Limit check
    can_add, reason = FeatureGate().check_limit(user_id, 'emergencyContacts', len(contacts))
"""

import asyncio
from dataclasses import dataclass
from functools import wraps
from typing import Optional, Tuple, Callable, Any

from subscription.entitlement_service import EntitlementService, get_entitlement_service
from subscription.models import (
    SubscriptionTier,
    FREE_TIER,
    PREMIUM_TIER,
    FEATURE_NAMES,
    LIMIT_NAMES,
    UNLIMITED,
)
from utils.logger import logger


class FeatureGateError(Exception):
    """Raised when a feature is not available"""

    def __init__(self, feature: str, required_tier: str, message: str):
        self.feature = feature
        self.required_tier = required_tier
        self.message = message
        super().__init__(message)


@dataclass
class GateDecision:
    """Result of a feature check, including whether to prompt for upgrade"""
    feature: str
    has_access: bool
    needs_upgrade: bool
    message: Optional[str] = None


# Display names for upgrade prompts
FEATURE_DISPLAY_NAMES = {
    'stateGuides': 'State Guides',
    'basicScripts': 'Basic Scripts',
    'localRecording': 'Local Recording',
    'basicAlerts': 'Emergency Alerts',
    'languages': 'Languages',
    'cloudStorage': 'Cloud Storage',
    'advancedScripts': 'Advanced Scripts',
    'multipleStates': 'Multiple States',
    'encounterCards': 'Encounter Cards',
    'prioritySupport': 'Priority Support',
    'recordings': 'recordings',
    'emergencyContacts': 'emergency contacts',
}


class FeatureGate:
    """
    Controls access to features based on the user's effective tier.

    This is the central point for all feature access checks.
    """

    def __init__(self, service: Optional[EntitlementService] = None):
        self._service = service

    @property
    def service(self) -> EntitlementService:
        return self._service or get_entitlement_service()

    @staticmethod
    def get_required_tier(feature_name: str) -> Optional[SubscriptionTier]:
        """Lowest tier that grants a feature, None if no tier grants it"""
        if FREE_TIER.has_feature(feature_name):
            return SubscriptionTier.FREE
        if PREMIUM_TIER.has_feature(feature_name):
            return SubscriptionTier.PREMIUM
        return None

    @classmethod
    def get_upgrade_message(cls, feature_name: str) -> str:
        """Get a user-friendly upgrade message for a feature"""
        if feature_name in LIMIT_NAMES and feature_name not in FEATURE_NAMES:
            display = FEATURE_DISPLAY_NAMES.get(feature_name, feature_name)
            premium_limit = PREMIUM_TIER.limit(feature_name)
            if premium_limit == UNLIMITED:
                return f"You've reached the free limit for {display}. Upgrade to Premium for unlimited {display}."
            return f"You've reached the free limit for {display}. Upgrade to Premium for up to {premium_limit}."

        return (
            "This feature requires a Premium subscription. "
            f"Upgrade for just ${PREMIUM_TIER.price}/month to unlock all features."
        )

    def check_feature(self, user_id: str, feature_name: str) -> GateDecision:
        """
        Check a feature for a user.

        needs_upgrade is only set when upgrading would actually help, i.e. the
        user is not already effectively premium.
        """
        has_access = self.service.has_feature(user_id, feature_name)
        needs_upgrade = not has_access and not self.service.is_effectively_premium(user_id)

        return GateDecision(
            feature=feature_name,
            has_access=has_access,
            needs_upgrade=needs_upgrade,
            message=self.get_upgrade_message(feature_name) if needs_upgrade else None,
        )

    def check_limit(self, user_id: str, limit_name: str, current_value: int) -> Tuple[bool, Optional[str]]:
        """
        Check if adding one more item would exceed a limit.

        Returns:
            Tuple of (is_allowed, error_message)
        """
        if self.service.is_within_limit(user_id, limit_name, current_value):
            return True, None

        limit = self.service.get_feature_limit(user_id, limit_name)
        display = FEATURE_DISPLAY_NAMES.get(limit_name, limit_name)
        message = f"Limit reached: maximum {display} is {limit}."
        if not self.service.is_effectively_premium(user_id):
            message = f"{message} {self.get_upgrade_message(limit_name)}"
        return False, message


def _resolve_user_id(user_id_getter: Optional[Callable[..., str]], args, kwargs) -> str:
    if user_id_getter is not None:
        return user_id_getter(*args, **kwargs)
    try:
        return kwargs['user_id']
    except KeyError:
        raise TypeError("Gated function must be called with a user_id keyword argument") from None


def feature_required(
    feature_name: str,
    raise_error: bool = True,
    user_id_getter: Optional[Callable[..., str]] = None,
):
    """
    Decorator to require a feature for a function.

    Args:
        feature_name: Name of the required feature
        raise_error: If True, raise FeatureGateError. If False, return None.
        user_id_getter: Extracts the user id from the call arguments.
            Defaults to the user_id keyword argument.

    Usage:
        @feature_required('encounterCards')
        async def generate_encounter_card(state, *, user_id):
            ...
    """
    def check(args, kwargs) -> bool:
        user_id = _resolve_user_id(user_id_getter, args, kwargs)
        decision = FeatureGate().check_feature(user_id, feature_name)
        if decision.has_access:
            return True

        message = decision.message or FeatureGate.get_upgrade_message(feature_name)
        if raise_error:
            required_tier = FeatureGate.get_required_tier(feature_name)
            raise FeatureGateError(
                feature=feature_name,
                required_tier=required_tier.value if required_tier else 'unknown',
                message=message
            )
        logger.warning(f"Feature '{feature_name}' not available for {user_id}: {message}")
        return False

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            if not check(args, kwargs):
                return None
            return await func(*args, **kwargs)

        @wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            if not check(args, kwargs):
                return None
            return func(*args, **kwargs)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def limit_check(
    limit_name: str,
    count_getter: Callable[..., int],
    user_id_getter: Optional[Callable[..., str]] = None,
):
    """
    Decorator to check a limit before executing a function.

    Args:
        limit_name: Name of the limit to check
        count_getter: Function to get current count from args

    Usage:
        @limit_check('emergencyContacts', lambda contacts, new, **kw: len(contacts))
        def add_contact(contacts, new, *, user_id):
            ...
    """
    def check(args, kwargs):
        user_id = _resolve_user_id(user_id_getter, args, kwargs)
        current_count = count_getter(*args, **kwargs)
        can_proceed, error_msg = FeatureGate().check_limit(user_id, limit_name, current_count)

        if not can_proceed:
            raise FeatureGateError(
                feature=limit_name,
                required_tier=SubscriptionTier.PREMIUM.value,
                message=error_msg
            )

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            check(args, kwargs)
            return await func(*args, **kwargs)

        @wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            check(args, kwargs)
            return func(*args, **kwargs)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


# Convenience functions for common checks

def can_add_recording(user_id: str, recordings: list) -> Tuple[bool, Optional[str]]:
    """Check if user can save another recording"""
    return FeatureGate().check_limit(user_id, 'recordings', len(recordings))


def can_add_emergency_contact(user_id: str, contacts: list) -> Tuple[bool, Optional[str]]:
    """Check if user can add another emergency contact"""
    return FeatureGate().check_limit(user_id, 'emergencyContacts', len(contacts))


def can_view_state_guide(user_id: str, state_code: str, primary_state: str) -> Tuple[bool, Optional[str]]:
    """The primary state's guide is always available; others need multipleStates"""
    if state_code.upper() == primary_state.upper():
        return True, None

    decision = FeatureGate().check_feature(user_id, 'multipleStates')
    if decision.has_access:
        return True, None
    return False, decision.message or FeatureGate.get_upgrade_message('multipleStates')
