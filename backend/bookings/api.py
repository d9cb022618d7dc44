"""HTTP endpoints for booking payments and the completion job."""

from __future__ import annotations

import logging

from rest_framework import permissions
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.response import Response

from core.permissions import HasServiceRoleKey
from payments.deposits import process_deposit_refund as run_deposit_refund
from payments.holds import capture_booking_hold as capture_hold
from payments.holds import create_booking_hold as create_hold
from payments.holds import release_booking_hold as release_hold
from payments.refunds import process_refund as run_refund

from .settlement import complete_ended_bookings as run_completion_job

logger = logging.getLogger(__name__)


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
def create_booking_hold(request):
    """Start a manual-capture checkout for the caller's booking request."""
    result = create_hold(
        request.user,
        request.data,
        origin=request.headers.get("Origin"),
    )
    return Response({"success": True, **result.as_response()})


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
def capture_booking_hold(request):
    """Host approval: capture the renter's authorized payment."""
    result = capture_hold(request.user, request.data)
    return Response({"success": True, **result.as_response()})


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
def release_booking_hold(request):
    result = release_hold(request.user, request.data)
    return Response({"success": True, **result.as_response()})


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
def process_refund(request):
    outcome = run_refund(request.user, request.data)
    return Response({"success": True, **outcome.as_response()})


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
def process_deposit_refund(request):
    outcome = run_deposit_refund(request.user, request.data)
    return Response({"success": True, **outcome.as_response()})


@api_view(["POST"])
@authentication_classes([])
@permission_classes([HasServiceRoleKey])
def complete_ended_bookings(request):
    summary = run_completion_job()
    return Response({"success": True, **summary.as_response()})
