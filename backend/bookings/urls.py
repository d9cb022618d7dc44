"""URL routing for the bookings API."""

from django.urls import path

from . import api

app_name = "bookings"

urlpatterns = [
    path("create-booking-hold/", api.create_booking_hold, name="create-booking-hold"),
    path("capture-booking-hold/", api.capture_booking_hold, name="capture-booking-hold"),
    path("release-booking-hold/", api.release_booking_hold, name="release-booking-hold"),
    path("process-refund/", api.process_refund, name="process-refund"),
    path(
        "process-deposit-refund/",
        api.process_deposit_refund,
        name="process-deposit-refund",
    ),
    path(
        "complete-ended-bookings/",
        api.complete_ended_bookings,
        name="complete-ended-bookings",
    ),
]
