"""
ViewSet for bookings API.

URL Structure:
    /api/v1/bookings/                           GET
    /api/v1/bookings/{id}/                      GET
    /api/v1/bookings/{id}/accept/               POST (provider)
    /api/v1/bookings/{id}/start/                POST (provider)
    /api/v1/bookings/{id}/complete/             POST (provider)
    /api/v1/bookings/{id}/confirm-completion/   POST (client)
    /api/v1/bookings/{id}/cancel/               POST (client or provider)

Design Decisions:
    - Users only ever see bookings they are a party to
    - All status changes go through BookingService
    - Confirming completion releases the escrowed payment
"""

from __future__ import annotations

from django.db.models import Q
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from bookings.models import Booking
from bookings.permissions import IsBookingClient, IsBookingParticipant, IsBookingProvider
from bookings.serializers import BookingSerializer, CancelBookingSerializer
from bookings.services import BookingService

# Failure codes answered with 409 Conflict; everything else is 400
CONFLICT_ERROR_CODES = frozenset({"INVALID_BOOKING_TRANSITION", "STATE_CONFLICT"})


class BookingViewSet(viewsets.ReadOnlyModelViewSet):
    """
    ViewSet for booking operations.

    list:
        Bookings where the current user is the client or the provider.

    retrieve:
        Booking details including the escrow payment state.

    complete:
        Provider marks the job done. Starts the auto-confirmation window.

    confirm_completion:
        Client confirms the job was done. Releases the payment.
    """

    serializer_class = BookingSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        """Filter to bookings the user is a party to."""
        user = self.request.user
        if not user.is_authenticated:
            return Booking.objects.none()

        return (
            Booking.objects.filter(Q(client=user) | Q(provider__user=user))
            .select_related("provider", "escrow_entry")
            .order_by("-scheduled_at")
        )

    def get_permissions(self):
        """Return permissions based on action."""
        if self.action in ("accept", "start", "complete"):
            return [IsAuthenticated(), IsBookingProvider()]
        if self.action == "confirm_completion":
            return [IsAuthenticated(), IsBookingClient()]
        if self.action in ("retrieve", "cancel"):
            return [IsAuthenticated(), IsBookingParticipant()]
        return [IsAuthenticated()]

    def _respond(self, result) -> Response:
        if not result.success:
            http_status = (
                status.HTTP_409_CONFLICT
                if result.error_code in CONFLICT_ERROR_CODES
                else status.HTTP_400_BAD_REQUEST
            )
            return Response(
                {"error": result.error, "error_code": result.error_code},
                status=http_status,
            )
        return Response(BookingSerializer(result.data).data)

    @extend_schema(
        summary="Accept booking",
        request=None,
        responses={200: BookingSerializer, 409: OpenApiResponse(description="Not requested")},
        tags=["Bookings"],
    )
    @action(detail=True, methods=["post"])
    def accept(self, request, pk=None):
        return self._respond(BookingService.accept(self.get_object(), request.user))

    @extend_schema(
        summary="Start job",
        request=None,
        responses={200: BookingSerializer, 409: OpenApiResponse(description="Not confirmed")},
        tags=["Bookings"],
    )
    @action(detail=True, methods=["post"])
    def start(self, request, pk=None):
        return self._respond(BookingService.start(self.get_object(), request.user))

    @extend_schema(
        summary="Mark job completed",
        request=None,
        responses={200: BookingSerializer, 409: OpenApiResponse(description="Not in progress")},
        tags=["Bookings"],
    )
    @action(detail=True, methods=["post"])
    def complete(self, request, pk=None):
        return self._respond(BookingService.mark_completed(self.get_object(), request.user))

    @extend_schema(
        summary="Confirm completion",
        description="Confirm the job was done and release the escrowed payment to the provider.",
        request=None,
        responses={
            200: BookingSerializer,
            404: OpenApiResponse(description="Booking or payment not found"),
            409: OpenApiResponse(description="Not completed, or payment not held in escrow"),
        },
        tags=["Bookings"],
    )
    @action(detail=True, methods=["post"], url_path="confirm-completion")
    def confirm_completion(self, request, pk=None):
        result = BookingService.confirm_completion(self.get_object(), request.user)
        if not result.success and result.error_code == "PAYMENT_NOT_FOUND":
            return Response(
                {"error": result.error, "error_code": result.error_code},
                status=status.HTTP_404_NOT_FOUND,
            )
        return self._respond(result)

    @extend_schema(
        summary="Cancel booking",
        request=CancelBookingSerializer,
        responses={200: BookingSerializer, 409: OpenApiResponse(description="Work already started")},
        tags=["Bookings"],
    )
    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        serializer = CancelBookingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._respond(
            BookingService.cancel(
                self.get_object(),
                request.user,
                reason=serializer.validated_data["reason"],
            )
        )
