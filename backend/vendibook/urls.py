from django.urls import include, path

urlpatterns = [
    path("api/", include(("bookings.urls", "bookings"), namespace="bookings")),
    path("api/", include(("sales.urls", "sales"), namespace="sales")),
    path("api/", include(("operator_core.urls", "operator_core"), namespace="operator_core")),
]
