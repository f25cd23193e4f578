"""
Billing package - subscriptions, entitlements, usage metering and revenue.

Subscription state is driven by Stripe webhooks through the reconciliation
engine; product code reads it through the entitlement gate.
"""
