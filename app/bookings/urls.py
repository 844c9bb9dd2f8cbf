"""
URL configuration for bookings API.

URL Structure:
    /                               GET
    /{id}/                          GET
    /{id}/accept/                   POST
    /{id}/start/                    POST
    /{id}/complete/                 POST
    /{id}/confirm-completion/       POST
    /{id}/cancel/                   POST

All URLs are prefixed with /api/v1/bookings/ in the main URL configuration.
"""

from django.urls import include, path
from rest_framework.routers import SimpleRouter

from bookings.views import BookingViewSet

router = SimpleRouter()
router.register(r"", BookingViewSet, basename="booking")

app_name = "bookings"

urlpatterns = [
    path("", include(router.urls)),
]
