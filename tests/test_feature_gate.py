#!/usr/bin/env python3
"""
Feature Gate Tests

Tests for runtime checks, upgrade prompts and the gating decorators.
"""

import pytest

from subscription.feature_gate import (
    FeatureGate,
    FeatureGateError,
    feature_required,
    limit_check,
    can_add_recording,
    can_add_emergency_contact,
    can_view_state_guide,
)
from subscription.models import SubscriptionTier, UnknownEntitlementError

USER = "user-1"


class TestFeatureGate:
    """Tests for FeatureGate checks"""

    def test_free_user_needs_upgrade(self, service):
        decision = FeatureGate(service).check_feature(USER, "encounterCards")

        assert decision.has_access is False
        assert decision.needs_upgrade is True
        assert "$4.99/month" in decision.message

    def test_free_user_basic_feature(self, service):
        decision = FeatureGate(service).check_feature(USER, "basicAlerts")
        assert decision.has_access is True
        assert decision.needs_upgrade is False
        assert decision.message is None

    @pytest.mark.asyncio
    async def test_premium_user_has_access(self, service, payment):
        await service.upgrade(USER, payment)
        decision = FeatureGate(service).check_feature(USER, "encounterCards")
        assert decision.has_access is True
        assert decision.needs_upgrade is False

    def test_unknown_feature(self, service):
        with pytest.raises(UnknownEntitlementError):
            FeatureGate(service).check_feature(USER, "timeTravel")

    def test_required_tier(self):
        assert FeatureGate.get_required_tier("basicScripts") == SubscriptionTier.FREE
        assert FeatureGate.get_required_tier("cloudStorage") == SubscriptionTier.PREMIUM

    def test_limit_within(self, service):
        assert FeatureGate(service).check_limit(USER, "emergencyContacts", 1) == (True, None)

    def test_limit_reached_suggests_upgrade(self, service):
        allowed, message = FeatureGate(service).check_limit(USER, "emergencyContacts", 2)
        assert allowed is False
        assert "maximum emergency contacts is 2" in message
        assert "up to 10" in message

    def test_recordings_limit_message(self, service):
        allowed, message = FeatureGate(service).check_limit(USER, "recordings", 5)
        assert allowed is False
        assert "unlimited recordings" in message

    @pytest.mark.asyncio
    async def test_premium_limit_reached_has_no_upgrade_prompt(self, service, payment):
        await service.upgrade(USER, payment)
        allowed, message = FeatureGate(service).check_limit(USER, "emergencyContacts", 10)
        assert allowed is False
        assert message == "Limit reached: maximum emergency contacts is 10."


class TestDecorators:
    """Tests for feature_required and limit_check"""

    def test_sync_function_denied(self, global_service):
        @feature_required("cloudStorage")
        def upload(recording, *, user_id):
            return "uploaded"

        with pytest.raises(FeatureGateError) as exc_info:
            upload("rec-1", user_id=USER)

        assert exc_info.value.feature == "cloudStorage"
        assert exc_info.value.required_tier == "premium"

    def test_sync_function_allowed(self, global_service):
        @feature_required("localRecording")
        def record(*, user_id):
            return "recorded"

        assert record(user_id=USER) == "recorded"

    @pytest.mark.asyncio
    async def test_async_function_after_upgrade(self, global_service, payment):
        @feature_required("encounterCards")
        async def generate_card(state, *, user_id):
            return f"card for {state}"

        with pytest.raises(FeatureGateError):
            await generate_card("CA", user_id=USER)

        await global_service.upgrade(USER, payment)
        assert await generate_card("CA", user_id=USER) == "card for CA"

    def test_soft_denial_returns_none(self, global_service):
        @feature_required("advancedScripts", raise_error=False)
        def script(*, user_id):
            return "script"

        assert script(user_id=USER) is None

    def test_custom_user_id_getter(self, global_service):
        @feature_required("basicScripts", user_id_getter=lambda profile: profile["id"])
        def script(profile):
            return "script"

        assert script({"id": USER}) == "script"

    def test_missing_user_id(self, global_service):
        @feature_required("basicScripts")
        def script():
            return "script"

        with pytest.raises(TypeError):
            script()

    def test_limit_check(self, global_service):
        @limit_check("emergencyContacts", lambda contacts, new, **kwargs: len(contacts))
        def add_contact(contacts, new, *, user_id):
            return contacts + [new]

        contacts = add_contact([], "mom", user_id=USER)
        contacts = add_contact(contacts, "lawyer", user_id=USER)
        assert contacts == ["mom", "lawyer"]

        with pytest.raises(FeatureGateError) as exc_info:
            add_contact(contacts, "friend", user_id=USER)
        assert exc_info.value.feature == "emergencyContacts"

    @pytest.mark.asyncio
    async def test_async_limit_check(self, global_service):
        @limit_check("recordings", lambda recordings, **kwargs: len(recordings))
        async def save_recording(recordings, *, user_id):
            return len(recordings) + 1

        assert await save_recording(["a"] * 4, user_id=USER) == 5
        with pytest.raises(FeatureGateError):
            await save_recording(["a"] * 5, user_id=USER)


class TestConvenienceChecks:
    """Tests for the common check helpers"""

    def test_recordings(self, global_service):
        assert can_add_recording(USER, ["r"] * 4) == (True, None)
        assert can_add_recording(USER, ["r"] * 5)[0] is False

    def test_emergency_contacts(self, global_service):
        assert can_add_emergency_contact(USER, ["c"])[0] is True
        assert can_add_emergency_contact(USER, ["c", "c"])[0] is False

    def test_primary_state_always_allowed(self, global_service):
        assert can_view_state_guide(USER, "ca", "CA") == (True, None)

    def test_other_state_needs_premium(self, global_service):
        allowed, message = can_view_state_guide(USER, "NY", "CA")
        assert allowed is False
        assert "Premium" in message

    @pytest.mark.asyncio
    async def test_other_state_with_premium(self, global_service, payment):
        await global_service.upgrade(USER, payment)
        assert can_view_state_guide(USER, "NY", "CA") == (True, None)
