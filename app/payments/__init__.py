"""
Payments app for booking escrow through Paystack.

This app handles:
- Payment initialization (hosted checkout) for bookings
- Holding client funds in escrow until the job is confirmed
- Releasing the provider's share as a bank transfer
- Refunds, payout re-queues and aggregate statistics for staff
- Webhook ingestion and periodic reconciliation with the gateway

Related apps:
    - bookings: Booking and ServiceProvider models
    - notifications: Real-time payment event fan-out

Usage:
    from payments.services import EscrowService

    # Start checkout
    result = EscrowService.initialize_payment(booking, request.user)

    # Release after the client confirms
    from payments.services import EscrowLedger
    EscrowLedger().begin_release(booking.escrow_entry.id)
"""
