"""
Payments: coupon-governed checkout, proof verification, settlement and
reconciliation for course and bundle purchases.

Modules:
- coupons: discount and eligibility rules
- pricing: authoritative amounts
- store: conditional writes over the ORM
- settlement: exactly-once fulfillment
- verification/: slip (SlipOK) and Stripe Checkout Session checks
- recovery: admin retry, listings, stale expiry, checkout page fallback

Author: Academy Development Team
Version: 1.0.0
"""
