"""
Bookings app for client-provider service engagements.

This app handles:
- Service providers and their registered payout destination
- Booking lifecycle (requested → confirmed → in progress → completed)
- Client confirmation of completed work, which releases escrowed funds

Related apps:
    - payments: Escrow ledger entry per booking, payouts
    - notifications: Booking and payment event fan-out
"""
