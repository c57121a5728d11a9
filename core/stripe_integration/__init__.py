"""
Stripe Integration Package - Academy
=============================================================

This package centralizes the Stripe-related entry points of the backend.

Current Scope
--------------------
- Uses `dj-stripe` to manage Stripe Customers and verified webhook Events.
- Provides an API endpoint (see views.py) for creating Checkout Sessions
  for course and bundle purchases.
- Provides webhook handlers (see signals.py) that settle or expire the local
  Payment behind a Checkout Session.

Design Rationale
----------------
- dj-stripe bridge: dj-stripe persists and de-duplicates Stripe events,
  while our handlers act on the project's own Payment / Enrollment models.
- Pricing, settlement and reconciliation live in `elearning.payments`;
  this package only adapts Stripe to them.

Structure
---------
- __init__.py (this file, documentation)
- apps.py         → App configuration (`StripeIntegrationConfig`)
- views.py        → API endpoint (Checkout Session)
- signals.py      → Webhook handlers (Event post-processing)
- urls.py         → Routes for Stripe endpoints

Author: Academy Development Team
Version: 1.0.0
"""
