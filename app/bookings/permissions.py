"""
Permission classes for bookings API.

This module provides DRF permission classes for booking actions:
- IsBookingParticipant: The booking's client or provider
- IsBookingClient: The user who booked (and pays)
- IsBookingProvider: The user behind the booking's ServiceProvider

Service methods repeat the ownership checks, so these only decide what
the API exposes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import permissions

if TYPE_CHECKING:
    from rest_framework.request import Request
    from rest_framework.views import APIView

    from bookings.models import Booking


class IsBookingParticipant(permissions.BasePermission):
    message = "You are not a party to this booking."

    def has_object_permission(self, request: Request, view: APIView, obj: Booking) -> bool:
        return request.user.is_authenticated and request.user.pk in obj.participant_user_ids()


class IsBookingClient(permissions.BasePermission):
    message = "Only the booking's client can do this."

    def has_object_permission(self, request: Request, view: APIView, obj: Booking) -> bool:
        return request.user.is_authenticated and obj.client_id == request.user.pk


class IsBookingProvider(permissions.BasePermission):
    message = "Only the booking's provider can do this."

    def has_object_permission(self, request: Request, view: APIView, obj: Booking) -> bool:
        return request.user.is_authenticated and obj.provider.user_id == request.user.pk
