from rest_framework import permissions
from rest_framework.response import Response
from rest_framework.views import APIView

from operator_core.permissions import IsAdmin
from operator_core.services import release_payout, set_payout_hold


class AdminReleasePayoutView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsAdmin]

    def post(self, request):
        outcome = release_payout(request.user, request.data)
        return Response({"success": True, **outcome.as_response()})


class AdminSetHoldView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsAdmin]

    def post(self, request):
        result = set_payout_hold(request.user, request.data)
        return Response({"success": True, **result})
