"""
Accounting synchronization engine.

Categorizes gym payments into revenue buckets, posts them to QuickBooks or
Xero, and keeps the idempotency ledger and sync-run logs.
"""
