"""
Payment Gateway - Stripe-backed subscription verification

The app never talks to Stripe directly. The Pocket Protector payments
backend holds the Stripe secret and exposes a small REST API:

    GET  /api/subscriptions/{subscription_id}
    POST /api/subscriptions/{subscription_id}/cancel   {"cancelAtPeriodEnd": bool}

The entitlement service uses this client to check a payment proof before
granting premium and to cancel at the provider before recording a cancel.
"""

import re
from typing import Optional, Dict, Any

import httpx

from subscription.models import PaymentConfirmation
from utils.logger import logger


# Provider subscription states that count as paid
PAID_STATUSES = ("active", "trialing")

_SUBSCRIPTION_ID_PATTERN = re.compile(r"sub_[A-Za-z0-9]{1,128}")


class PaymentGatewayError(Exception):
    """
    Raised when the payment provider rejects or cannot process a request.

    retryable is True for network failures, timeouts and 5xx responses.
    """

    def __init__(self, message: str, retryable: bool = False, status_code: Optional[int] = None):
        self.message = message
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(message)


def subscription_path(subscription_id: Optional[str], suffix: str = "") -> str:
    """Backend path for a provider subscription id; ids outside the sub_ format are rejected"""
    if not isinstance(subscription_id, str) or not _SUBSCRIPTION_ID_PATTERN.fullmatch(subscription_id):
        raise PaymentGatewayError(f"Invalid subscription id: {subscription_id!r}")
    return f"/api/subscriptions/{subscription_id}{suffix}"


class PaymentGateway:
    """Interface consumed by the entitlement service"""

    async def verify_payment(self, confirmation: PaymentConfirmation) -> PaymentConfirmation:
        """Return the verified confirmation or raise PaymentGatewayError"""
        raise NotImplementedError

    async def cancel_subscription(self, subscription_id: str, cancel_at_period_end: bool = True) -> Dict[str, Any]:
        raise NotImplementedError


class StripeGateway(PaymentGateway):
    """HTTP client for the payments backend"""

    def __init__(
        self,
        api_base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_base_url = api_base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json", "X-Client-Source": "pocket-protector"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return httpx.AsyncClient(
            base_url=self.api_base_url,
            timeout=self.timeout,
            headers=headers,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"Payments backend timeout on {method} {path}")
            raise PaymentGatewayError("Payment provider timed out", retryable=True) from e
        except httpx.HTTPError as e:
            logger.error(f"Payments backend unreachable: {e}")
            raise PaymentGatewayError("Payment system unavailable", retryable=True) from e
        except httpx.InvalidURL as e:
            logger.error(f"Invalid payments backend URL for {method} {path}: {e}")
            raise PaymentGatewayError("Invalid payment provider request") from e

        if response.status_code >= 500:
            logger.error(f"Payments backend error {response.status_code} on {method} {path}")
            raise PaymentGatewayError(
                f"Payment provider error: {response.status_code}",
                retryable=True,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.status_code >= 400:
            body = data if isinstance(data, dict) else {}
            message = body.get("message") or body.get("error") or f"Request failed: {response.status_code}"
            raise PaymentGatewayError(message, retryable=False, status_code=response.status_code)

        if not isinstance(data, dict):
            logger.error(f"Payments backend returned a non-object body on {method} {path}")
            raise PaymentGatewayError(
                "Invalid response from payment provider", status_code=response.status_code
            )

        return data

    async def verify_payment(self, confirmation: PaymentConfirmation) -> PaymentConfirmation:
        if not confirmation.subscription_id:
            raise PaymentGatewayError("Payment confirmation is missing a subscription id")

        data = await self._request("GET", subscription_path(confirmation.subscription_id))

        provider_status = data.get("status")
        if provider_status not in PAID_STATUSES:
            logger.warning(
                f"Subscription {confirmation.subscription_id} is not paid (status={provider_status})"
            )
            raise PaymentGatewayError(f"Subscription is not active (status: {provider_status})")

        customer_id = data.get("customer") or data.get("customerId") or confirmation.customer_id
        if confirmation.customer_id and customer_id != confirmation.customer_id:
            raise PaymentGatewayError("Payment confirmation does not match the subscription's customer")

        return PaymentConfirmation(
            payment_method=confirmation.payment_method,
            customer_id=customer_id,
            subscription_id=confirmation.subscription_id,
        )

    async def cancel_subscription(self, subscription_id: str, cancel_at_period_end: bool = True) -> Dict[str, Any]:
        data = await self._request(
            "POST",
            subscription_path(subscription_id, "/cancel"),
            json={"cancelAtPeriodEnd": cancel_at_period_end},
        )
        logger.info(f"Cancelled provider subscription {subscription_id} (at_period_end={cancel_at_period_end})")
        return data
