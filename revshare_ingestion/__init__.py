"""
revshare_ingestion -- Payment-gateway ingestion for the revenue-share kernel.

Normalizes gateway objects (charges, payment intents, payouts), upserts them
idempotently by external id, and hands completed transactions to the split
lifecycle.  Polling sync and webhook delivery share the same upsert path.

Architecture:
    revshare_ingestion/ is a top-level package. Nothing in revshare_kernel
    imports from ingestion, except the model registry that makes its tables
    part of Base.metadata.
"""
