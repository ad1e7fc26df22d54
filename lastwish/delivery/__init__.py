"""
Last Wish delivery pipeline.

Detects overdue subscriptions, claims them, gathers and filters the owner's
financial records, renders per-recipient digests, sends them, and records
every attempt in the delivery ledger.
"""
