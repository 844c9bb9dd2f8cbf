"""
Permission classes for payments API.

This module provides DRF permission classes for escrow endpoints:
- IsEscrowParticipantOrStaff: The booking's client or provider, or staff

Operator actions (refund, re-queue, stats) use DRF's IsAdminUser.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import permissions

if TYPE_CHECKING:
    from rest_framework.request import Request
    from rest_framework.views import APIView

    from payments.models import EscrowEntry


class IsEscrowParticipantOrStaff(permissions.BasePermission):
    """
    Allows access to the booking's client and provider, and to staff.
    """

    message = "You are not a party to this booking."

    def has_object_permission(self, request: Request, view: APIView, obj: EscrowEntry) -> bool:
        if not request.user.is_authenticated:
            return False
        if request.user.is_staff:
            return True
        return request.user.pk in obj.booking.participant_user_ids()
