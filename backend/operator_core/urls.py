from django.urls import path

from operator_core.api import AdminReleasePayoutView, AdminSetHoldView

app_name = "operator_core"

urlpatterns = [
    path("admin-release-payout/", AdminReleasePayoutView.as_view(), name="admin-release-payout"),
    path("admin-set-hold/", AdminSetHoldView.as_view(), name="admin-set-hold"),
]
