"""
Payment proof verification.

- slip: PromptPay transfer slips checked with the SlipOK API
- gateway: Stripe Checkout Sessions (webhook and checkout-page fallback)

Author: Academy Development Team
Version: 1.0.0
"""
