"""
URL configuration for the payments app.

Routes:
    - POST bookings/{id}/initialize/ - Start checkout for a booking
    - GET  escrow/stats/             - Aggregate escrow statistics (staff)
    - GET  escrow/{id}/              - Escrow entry detail
    - POST escrow/{id}/refund/       - Refund held funds (staff)
    - POST escrow/{id}/requeue/      - Re-queue a failed payout (staff)
    - POST webhooks/paystack/        - Paystack webhook endpoint

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("payments/", include("payments.urls")),
    ]
"""

from django.urls import path

from payments.views import (
    EscrowEntryDetailView,
    EscrowStatsView,
    InitializePaymentView,
    RefundView,
    RequeuePayoutView,
)
from payments.webhooks.views import paystack_webhook

app_name = "payments"

urlpatterns = [
    # Checkout
    path(
        "bookings/<uuid:booking_id>/initialize/",
        InitializePaymentView.as_view(),
        name="initialize-payment",
    ),
    # Escrow
    path("escrow/stats/", EscrowStatsView.as_view(), name="escrow-stats"),
    path("escrow/<uuid:pk>/", EscrowEntryDetailView.as_view(), name="escrow-detail"),
    path("escrow/<uuid:pk>/refund/", RefundView.as_view(), name="escrow-refund"),
    path("escrow/<uuid:pk>/requeue/", RequeuePayoutView.as_view(), name="escrow-requeue"),
    # Webhook endpoints
    path("webhooks/paystack/", paystack_webhook, name="paystack_webhook"),
]
