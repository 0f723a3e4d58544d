"""
Pocket Protector Entitlements Test Suite

Tests for:
- Tier catalogue and subscription records
- Record storage
- Entitlement service transitions and queries
- Feature gates
- Payment gateway client
- Subscription API endpoints

Run tests with:
    pytest tests/ -v
"""
