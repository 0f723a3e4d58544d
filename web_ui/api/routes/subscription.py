"""
Subscription Routes - API endpoints for subscription management

Exposes the entitlement service per user: status, feature and limit
checks, and the upgrade/cancel/reset transitions.
"""

from fastapi import APIRouter, HTTPException, status, Depends, Query
from pydantic import BaseModel
from typing import Optional, Dict, List, Union

from subscription.entitlement_service import EntitlementService, get_entitlement_service
from subscription.feature_gate import FeatureGate
from subscription.models import (
    PaymentConfirmation,
    SubscriptionResult,
    UnknownEntitlementError,
    TIER_DEFINITIONS,
    PRICING,
)
from subscription.storage import validate_user_id


router = APIRouter(prefix="/subscription", tags=["subscription"])


# ========== Pydantic Models ==========

class SubscriptionStatusResponse(BaseModel):
    user_id: str
    subscription: dict
    tier: str
    effective_tier: str
    is_premium: bool
    is_active: bool
    days_until_expiry: Optional[int] = None
    features: Dict[str, bool]
    limits: Dict[str, Union[int, str]]
    languages: List[str]


class FeatureCheckResponse(BaseModel):
    has_feature: bool
    feature_name: str
    needs_upgrade: bool
    upgrade_message: Optional[str] = None


class LimitCheckResponse(BaseModel):
    limit_name: str
    limit: Union[int, str]
    current_usage: int
    is_unlimited: bool
    is_within_limit: bool
    remaining: Optional[int] = None
    percentage: float
    error_message: Optional[str] = None


class UpgradeRequest(BaseModel):
    payment_method: str = "stripe"
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None


class SubscriptionResultResponse(BaseModel):
    success: bool
    subscription: Optional[dict] = None
    error: Optional[str] = None
    retryable: bool = False


# ========== Dependencies ==========

def get_service() -> EntitlementService:
    return get_entitlement_service()


def valid_user_id(user_id: str) -> str:
    try:
        return validate_user_id(user_id)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(e)}
        )


def _result_response(result: SubscriptionResult) -> SubscriptionResultResponse:
    if not result.success:
        if result.server_error:
            status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        elif result.retryable:
            status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        else:
            status_code = status.HTTP_400_BAD_REQUEST
        raise HTTPException(
            status_code=status_code,
            detail={"message": result.error, "retryable": result.retryable}
        )
    return SubscriptionResultResponse(**result.to_dict())


# ========== Routes ==========

@router.get("/tiers")
async def get_tiers():
    """
    Get the tier catalogue with pricing.
    """
    return {
        tier.value: {**definition.to_dict(), **PRICING[tier]}
        for tier, definition in TIER_DEFINITIONS.items()
    }


@router.get("/{user_id}/status", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    user_id: str = Depends(valid_user_id),
    service: EntitlementService = Depends(get_service),
):
    """
    Get current subscription status.

    Returns comprehensive subscription info for the UI.
    """
    return SubscriptionStatusResponse(**service.get_status(user_id))


@router.get("/{user_id}/feature/{feature_name}", response_model=FeatureCheckResponse)
async def check_feature(
    feature_name: str,
    user_id: str = Depends(valid_user_id),
    service: EntitlementService = Depends(get_service),
):
    """
    Check if a specific feature is available.
    """
    try:
        decision = FeatureGate(service).check_feature(user_id, feature_name)
    except UnknownEntitlementError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"message": str(e)})

    return FeatureCheckResponse(
        has_feature=decision.has_access,
        feature_name=feature_name,
        needs_upgrade=decision.needs_upgrade,
        upgrade_message=decision.message
    )


@router.get("/{user_id}/limit/{limit_name}", response_model=LimitCheckResponse)
async def check_limit(
    limit_name: str,
    current: int = Query(0, ge=0),
    user_id: str = Depends(valid_user_id),
    service: EntitlementService = Depends(get_service),
):
    """
    Check usage of a limited resource.
    """
    try:
        report = service.get_usage(user_id, limit_name, current)
        _, error_message = FeatureGate(service).check_limit(user_id, limit_name, current)
    except UnknownEntitlementError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"message": str(e)})

    return LimitCheckResponse(**report.to_dict(), error_message=error_message)


@router.post("/{user_id}/upgrade", response_model=SubscriptionResultResponse)
async def upgrade(
    request: UpgradeRequest,
    user_id: str = Depends(valid_user_id),
    service: EntitlementService = Depends(get_service),
):
    """
    Upgrade to Premium after a successful checkout.
    """
    confirmation = PaymentConfirmation(
        payment_method=request.payment_method,
        customer_id=request.customer_id,
        subscription_id=request.subscription_id,
    )
    result = await service.upgrade(user_id, confirmation)
    return _result_response(result)


@router.post("/{user_id}/cancel", response_model=SubscriptionResultResponse)
async def cancel(
    user_id: str = Depends(valid_user_id),
    service: EntitlementService = Depends(get_service),
):
    """
    Cancel the subscription.
    """
    result = await service.cancel(user_id)
    return _result_response(result)


@router.post("/{user_id}/reset", response_model=SubscriptionResultResponse)
async def reset(
    user_id: str = Depends(valid_user_id),
    service: EntitlementService = Depends(get_service),
):
    """
    Reset the subscription to Free/Active.
    """
    result = await service.reset_to_free(user_id)
    return _result_response(result)
