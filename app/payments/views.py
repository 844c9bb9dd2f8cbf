"""
DRF views for payments app.

This module provides API views for:
- Payment initialization (hosted checkout for a booking)
- Escrow entry detail for booking participants and staff
- Operator actions: refund, payout re-queue
- Aggregate escrow statistics

Related files:
    - services/: EscrowService, EscrowStatsService
    - serializers.py: Request/response serializers
    - urls.py: URL routing
    - webhooks/views.py: Gateway webhook endpoint

Endpoints:
    POST /api/v1/payments/bookings/{id}/initialize/ - Start checkout
    GET  /api/v1/payments/escrow/{id}/               - Escrow entry detail
    POST /api/v1/payments/escrow/{id}/refund/        - Refund held funds (staff)
    POST /api/v1/payments/escrow/{id}/requeue/       - Re-queue failed payout (staff)
    GET  /api/v1/payments/escrow/stats/              - Escrow statistics (staff)

Security:
    - All endpoints require authentication
    - Operator endpoints require staff
"""

from __future__ import annotations

import logging

from django.apps import apps
from django.shortcuts import get_object_or_404
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from bookings.models import Booking
from core.services import ServiceResult
from payments.models import EscrowEntry
from payments.permissions import IsEscrowParticipantOrStaff
from payments.serializers import (
    EscrowEntrySerializer,
    EscrowStatsSerializer,
    PaymentInitializationSerializer,
    RefundRequestSerializer,
    RequeueRequestSerializer,
    StaffEscrowEntrySerializer,
)
from payments.services import EscrowService

logger = logging.getLogger(__name__)


# Error codes answered with 409 Conflict
CONFLICT_ERROR_CODES = frozenset(
    {
        "ALREADY_PAID",
        "BOOKING_NOT_PAYABLE",
        "STATE_CONFLICT",
        "STALE_RECORD",
    }
)


def failure_response(result: ServiceResult) -> Response:
    """Map a failed ServiceResult to an error response."""
    code = result.error_code or ""

    if code == "NOT_BOOKING_CLIENT":
        http_status = status.HTTP_403_FORBIDDEN
    elif code.endswith("NOT_FOUND"):
        http_status = status.HTTP_404_NOT_FOUND
    elif code in CONFLICT_ERROR_CODES:
        http_status = status.HTTP_409_CONFLICT
    elif code.startswith("GATEWAY_") or code == "INVALID_PAYOUT_DESTINATION":
        http_status = status.HTTP_502_BAD_GATEWAY
    else:
        http_status = status.HTTP_400_BAD_REQUEST

    return Response({"error": result.error, "error_code": result.error_code}, status=http_status)


class InitializePaymentView(APIView):
    """
    Start checkout for a booking.

    POST /api/v1/payments/bookings/{id}/initialize/

    Returns:
        {"escrow_entry_id", "authorization_url", "reference", "breakdown"}

    Calling it again while the payment is still pending returns the same
    checkout instead of starting a second charge.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Initialize payment",
        description="Create (or return the pending) hosted checkout for a booking.",
        request=None,
        responses={
            200: PaymentInitializationSerializer,
            403: OpenApiResponse(description="Not the booking's client"),
            404: OpenApiResponse(description="Booking not found"),
            409: OpenApiResponse(description="Already paid or not payable"),
            502: OpenApiResponse(description="Gateway unavailable"),
        },
        tags=["Payments - Checkout"],
    )
    def post(self, request, booking_id):
        booking = get_object_or_404(Booking.objects.select_related("provider"), pk=booking_id)

        result = EscrowService.initialize_payment(booking, request.user)
        if not result.success:
            return failure_response(result)

        return Response(PaymentInitializationSerializer(result.data).data)


class EscrowEntryDetailView(APIView):
    """
    Escrow entry detail.

    GET /api/v1/payments/escrow/{id}/

    Participants see the entry's state and amounts; staff also see the
    payout episode and attempt history.
    """

    permission_classes = [IsAuthenticated, IsEscrowParticipantOrStaff]

    @extend_schema(
        summary="Get escrow entry",
        responses={
            200: EscrowEntrySerializer,
            403: OpenApiResponse(description="Not a party to this booking"),
            404: OpenApiResponse(description="Escrow entry not found"),
        },
        tags=["Payments - Escrow"],
    )
    def get(self, request, pk):
        entry = get_object_or_404(
            EscrowEntry.objects.select_related("booking__provider"),
            pk=pk,
        )
        self.check_object_permissions(request, entry)

        serializer_class = StaffEscrowEntrySerializer if request.user.is_staff else EscrowEntrySerializer
        return Response(serializer_class(entry).data)


class RefundView(APIView):
    """
    Refund held funds to the client.

    POST /api/v1/payments/escrow/{id}/refund/

    Request body:
        {"reason": "Provider did not show up"}

    Only entries that have not started release can be refunded.
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        summary="Refund escrow entry",
        request=RefundRequestSerializer,
        responses={
            200: StaffEscrowEntrySerializer,
            404: OpenApiResponse(description="Escrow entry not found"),
            409: OpenApiResponse(description="Entry cannot be refunded in its state"),
            502: OpenApiResponse(description="Gateway refused or unavailable"),
        },
        tags=["Payments - Operations"],
    )
    def post(self, request, pk):
        serializer = RefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = EscrowService.refund(pk, reason=serializer.validated_data["reason"])
        if not result.success:
            return failure_response(result)

        logger.info(
            "Escrow entry refunded by staff",
            extra={"escrow_entry_id": str(pk), "staff_user_id": str(request.user.pk)},
        )
        return Response(StaffEscrowEntrySerializer(result.data).data)


class RequeuePayoutView(APIView):
    """
    Re-queue a FAILED payout under a new idempotency key.

    POST /api/v1/payments/escrow/{id}/requeue/

    Request body:
        {"expected_version": 7}  # optional optimistic check
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        summary="Re-queue failed payout",
        request=RequeueRequestSerializer,
        responses={
            200: StaffEscrowEntrySerializer,
            404: OpenApiResponse(description="Escrow entry not found"),
            409: OpenApiResponse(description="Not FAILED, or changed since expected_version"),
        },
        tags=["Payments - Operations"],
    )
    def post(self, request, pk):
        serializer = RequeueRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = EscrowService.requeue(
            pk,
            expected_version=serializer.validated_data.get("expected_version"),
        )
        if not result.success:
            return failure_response(result)

        logger.info(
            "Payout re-queued by staff",
            extra={"escrow_entry_id": str(pk), "staff_user_id": str(request.user.pk)},
        )
        return Response(StaffEscrowEntrySerializer(result.data).data)


class EscrowStatsView(APIView):
    """
    Aggregate escrow statistics.

    GET /api/v1/payments/escrow/stats/
    GET /api/v1/payments/escrow/stats/?refresh=1  # bypass the cache
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        summary="Escrow statistics",
        parameters=[
            OpenApiParameter(
                name="refresh",
                type=OpenApiTypes.BOOL,
                location=OpenApiParameter.QUERY,
                description="Recompute instead of serving the cached summary",
            ),
        ],
        responses={200: EscrowStatsSerializer},
        tags=["Payments - Operations"],
    )
    def get(self, request):
        stats = apps.get_app_config("payments").stats_service

        if request.query_params.get("refresh") in ("1", "true", "True"):
            stats.invalidate()

        return Response(EscrowStatsSerializer(stats.summary()).data)
