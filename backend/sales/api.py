"""Scheduler-triggered endpoints for sale settlement."""

from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.response import Response

from core.permissions import HasServiceRoleKey

from . import settlement


@api_view(["POST"])
@authentication_classes([])
@permission_classes([HasServiceRoleKey])
def auto_release_sale_payouts(request):
    summary = settlement.auto_release_sale_payouts()
    return Response({"success": True, **summary.as_response()})


@api_view(["POST"])
@authentication_classes([])
@permission_classes([HasServiceRoleKey])
def retry_pending_payouts(request):
    summary = settlement.retry_pending_payouts()
    return Response({"success": True, **summary.as_response()})
