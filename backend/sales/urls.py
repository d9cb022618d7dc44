from django.urls import path

from . import api

app_name = "sales"

urlpatterns = [
    path(
        "auto-release-sale-payouts/",
        api.auto_release_sale_payouts,
        name="auto-release-sale-payouts",
    ),
    path("retry-pending-payouts/", api.retry_pending_payouts, name="retry-pending-payouts"),
]
