"""
Revenue-share kernel

Distributes merchant transaction revenue to partners under negotiated
agreements and reconciles the resulting obligations against payouts:
- Deterministic single-agreement matching
- Exact integer partner/merchant splits (refunds and chargebacks included)
- Idempotent split recording (one link per transaction/agreement)
- Monthly minimum-guarantee settlement with proportional true-up
- Outstanding balance derived from splits minus completed payouts
"""

__version__ = "0.1.0"
